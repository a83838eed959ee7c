"""Shared test fixtures: raw review documents in both supported shapes."""

import pytest


@pytest.fixture
def pm_raw_document():
    """
    Single-rater (PM) form as returned by ReviewService.get_form_detail.

    Covers every section kind a PM form can carry: introduction, user info,
    one objectives section (one writable and one read-only objective),
    one competency section, a SKILL custom section, a free-text custom
    section and the summary.
    """
    return {
        "formContentId": 5001,
        "formDataId": 7001,
        "formHeader": {
            "formTitle": "2025 Annual Review",
            "formSubjectId": "emp01",
            "formDataId": 7001,
        },
        "pmReviewContentDetail": {"results": [{
            "introductionSection": {
                "sectionIndex": 0,
                "sectionName": "Introduction",
                "sectionDescription": "<p>Welcome&nbsp;to your review</p>",
            },
            "userInformationSection": {
                "sectionIndex": 1,
                "sectionName": "Employee Information",
            },
            "subjectUser": {
                "userId": "emp01",
                "firstName": "Dana",
                "lastName": "Kim",
                "title": "Engineer",
                "department": "R&D",
                "hireDate": "/Date(1577836800000)/",
            },
            "objectiveSections": {"results": [{
                "sectionIndex": 2,
                "sectionName": "Goals",
                "sectionWeight": "50",
                "objectives": {"results": [
                    {
                        "itemId": "101",
                        "name": "Ship v2",
                        "officialRating": {
                            "rating": "3.5",
                            "comment": "Good progress",
                            "ratingKey": "obj101_rk",
                            "commentKey": "obj101_ck",
                            "ratingPermission": "write",
                            "commentPermission": "write",
                        },
                        "selfRatingComment": {
                            "rating": "4.0",
                            "comment": "Delivered on time",
                            "userId": "emp01",
                        },
                    },
                    {
                        "itemId": "102",
                        "name": "Reduce costs",
                        "officialRating": {
                            "rating": "2.0",
                            "ratingPermission": "none",
                            "commentPermission": "none",
                        },
                    },
                ]},
            }]},
            "competencySections": {"results": [{
                "sectionIndex": 3,
                "sectionName": "Core Competencies",
                "competencies": {"results": [{
                    "itemId": "201",
                    "name": "Communication",
                    "officialRating": {
                        "rating": "",
                        "comment": "",
                        "ratingKey": "comp201_rk",
                        "commentKey": "comp201_ck",
                        "ratingPermission": "write",
                        "commentPermission": "write",
                    },
                }]},
            }]},
            "customSections": {"results": [
                {
                    "sectionIndex": 4,
                    "sectionName": "Technical Skills",
                    "attributeType": "SKILL",
                    "customItems": {"results": [{
                        "itemId": "301",
                        "name": "Python",
                        "officialRating": {
                            "rating": "4",
                            "ratingKey": "skill301_rk",
                            "ratingPermission": "write",
                            "commentPermission": "none",
                        },
                    }]},
                },
                {
                    "sectionIndex": 5,
                    "sectionName": "Strengths",
                    "attributeType": "STRENGTH",
                    "officialRating": {
                        "comment": "",
                        "commentKey": "strength_ck",
                        "ratingPermission": "none",
                        "commentPermission": "write",
                    },
                },
            ]},
            "summarySection": {
                "sectionIndex": 6,
                "sectionName": "Overall Result",
                "overallFormRating": {
                    "rating": "3.50",
                    "ratingKey": "overall_rk",
                    "ratingPermission": "write",
                    "commentPermission": "none",
                },
                "selfRatingComment": {
                    "rating": "4",
                    "comment": "Great year",
                    "userId": "emp01",
                },
            },
        }]},
    }


@pytest.fixture
def multi_rater_raw_document():
    """
    Multi-rater (360) form as returned by ReviewService.get_form_360_detail.

    The current actor in these tests is ``peer01``: item 11 carries their
    own entry among the other raters, item 12 only an unrelated keyed entry.
    """
    return {
        "formContentId": 5002,
        "formDataId": 7002,
        "formHeader": {
            "formTitle": "360 Review 2025",
            "formSubjectId": "emp02",
        },
        "introductionSection": {
            "sectionIndex": 0,
            "sectionName": "About this review",
            "sectionDescription": "<b>Please rate honestly</b>",
        },
        "form360RaterSection": {
            "sectionIndex": 1,
            "sectionName": "Raters",
            "form360Raters": {"results": [
                {
                    "participantID": "mgr01",
                    "participantFullName": "Morgan Lee",
                    "category": "Manager",
                    "status": "Completed",
                },
                {
                    "participantID": "peer01",
                    "participantFullName": "Sam Park",
                    "category": "Peer",
                    "status": "In Progress",
                },
            ]},
        },
        "summaryViewSection": {
            "sectionIndex": 2,
            "sectionName": "Result Summary",
            "formRaters": {"results": [
                {"raterCategory": "Manager", "rating": "4.2"},
                {"raterCategory": "Peer", "rating": "3.8"},
            ]},
        },
        "competencySections": {"results": [{
            "sectionIndex": 3,
            "sectionName": "Leadership",
            "competencies": {"results": [
                {
                    "itemId": "11",
                    "name": "Teamwork",
                    "selfRatingComment": {"rating": "4", "comment": "", "userId": "emp02"},
                    "othersRatingComment": {"results": [
                        {
                            "userId": "mgr01",
                            "fullName": "Morgan Lee",
                            "rating": "3",
                            "comment": "Solid",
                        },
                        {
                            "userId": "peer01",
                            "fullName": "Sam Park",
                            "rating": "",
                            "comment": "",
                            "ratingKey": "peer11_rk",
                            "commentKey": "peer11_ck",
                        },
                    ]},
                },
                {
                    "itemId": "12",
                    "name": "Ownership",
                    "othersRatingComment": {"results": [
                        {"userId": "peer02", "rating": "", "ratingKey": "peer12_rk"},
                    ]},
                },
            ]},
        }]},
        "summarySection": {
            "sectionIndex": 4,
            "overallFormRating": {
                "rating": "",
                "comment": "",
                "ratingKey": "overall360_rk",
                "commentKey": "overall360_ck",
                "ratingPermission": "write",
                "commentPermission": "write",
            },
        },
    }
