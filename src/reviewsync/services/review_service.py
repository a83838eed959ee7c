"""Backend endpoints of the review-form family."""

from typing import Any, Optional

from reviewsync.models.form import CurrentUser, FormIdentity, FormSummary, UpsertResult
from reviewsync.services.exceptions import (
    ActionFailed,
    PartialLoad,
    ReviewSyncError,
    SaveFailed,
    TransportError,
)
from reviewsync.services.session import SessionClient
from reviewsync.utils.logging import get_logger
from reviewsync.utils.odata import form_key, int64_literal, results, string_literal


logger = get_logger(__name__)

PM_DETAIL_EXPAND = [
    "introductionSection",
    "userInformationSection",
    "objectiveSections/objectives/selfRatingComment",
    "objectiveSections/objectives/officialRating",
    "objectiveSections/objectives/othersRatingComment",
    "competencySections/competencies/selfRatingComment",
    "competencySections/competencies/officialRating",
    "competencySections/competencies/othersRatingComment",
    "summarySection/selfRatingComment",
    "summarySection/overallFormRating",
    "summarySection/othersRatingComment",
    "customSections",
]

# 360 detail is split in two reads; a single expansion times out at the gateway.
MULTI_RATER_LIGHT_EXPAND = [
    "introductionSection",
    "userInformationSection",
    "participantSection",
    "form360RaterSection/form360Raters",
    "summaryViewSection/formRaters",
    "summarySection/overallFormRating",
    "summarySection/selfRatingComment",
]

MULTI_RATER_HEAVY_EXPAND = [
    "objectiveSections/objectives/selfRatingComment",
    "objectiveSections/objectives/othersRatingComment",
    "competencySections/competencies/selfRatingComment",
    "competencySections/competencies/othersRatingComment",
    "customSections",
]

SUCCESS = "Success"


def _payload(response) -> Any:
    try:
        body = response.json()
    except ValueError as e:
        logger.error(
            "response_not_json",
            url=str(response.request.url),
            status_code=response.status_code,
            content_type=response.headers.get("content-type"),
        )
        raise TransportError(
            f"Expected a JSON body from {response.request.url.path}: {e}",
            status_code=response.status_code,
        ) from e
    if isinstance(body, dict) and "d" in body:
        return body["d"]
    return body


def _is_success(result: Any) -> bool:
    if result == SUCCESS:
        return True
    if isinstance(result, dict):
        if result.get("status") == SUCCESS:
            return True
        nested = result.get("d")
        if isinstance(nested, dict) and nested.get("status") == SUCCESS:
            return True
    return False


class ReviewService:
    """
    Read and write operations against the review OData service.

    All calls go through a SessionClient, so mutating calls carry the CSRF
    token and get the one-shot auth retry.
    """

    def __init__(self, client: SessionClient):
        self.client = client

    async def get_current_user(self) -> CurrentUser:
        """
        Resolve the current user.

        The app router knows the login name; the backend lookup maps it to the
        userId the review service attributes ratings to. When the lookup
        returns nothing, the login name is used as userId.
        """
        router_response = await self.client.request("GET", self.client.server.token_path)
        router_user = _payload(router_response) or {}

        try:
            lookup_response = await self.client.request("GET", self.client.server.user_lookup_path)
            lookup = (_payload(lookup_response) or {}).get("value") or []
        except TransportError as e:
            logger.warning("user_lookup_failed", error=str(e))
            lookup = []

        if lookup:
            backend_user = lookup[0]
            logger.info("current_user_resolved", source="backend", user_id=backend_user.get("userId"))
            return CurrentUser(
                user_id=backend_user["userId"],
                username=backend_user.get("username"),
                display_name=backend_user.get("defaultFullName") or router_user.get("displayName"),
                email=backend_user.get("email") or router_user.get("email"),
            )

        logger.warning("current_user_fallback", source="app_router")
        return CurrentUser(
            user_id=router_user.get("name") or "",
            display_name=router_user.get("displayName"),
            email=router_user.get("email"),
        )

    async def list_forms(self, user_id: str) -> list[FormSummary]:
        """List the forms in a user's review folders."""
        response = await self.client.request(
            "GET",
            self.client.odata_path("FormFolder"),
            params={
                "$filter": f"userId eq {string_literal(user_id)}",
                "$expand": "forms/formHeader",
                "$format": "json",
            },
        )

        summaries = []
        for folder in results(_payload(response)):
            for form in results(folder.get("forms")):
                header = form.get("formHeader") or {}
                form_data_id = header.get("formDataId", form.get("formDataId"))
                if form.get("formContentId") is None or form_data_id is None:
                    continue
                summaries.append(
                    FormSummary(
                        folder_id=str(folder.get("folderId")) if folder.get("folderId") is not None else None,
                        folder_name=folder.get("folderName"),
                        form_content_id=int(form["formContentId"]),
                        form_data_id=int(form_data_id),
                        title=header.get("formTitle") or "",
                        current_step=header.get("currentStep"),
                        last_modified=header.get("formLastModifiedDate"),
                    )
                )

        logger.info("forms_listed", user_id=user_id, count=len(summaries))
        return summaries

    async def _form_content(self, identity: FormIdentity) -> dict[str, Any]:
        key = form_key(identity.form_content_id, identity.form_data_id)
        response = await self.client.request(
            "GET",
            self.client.odata_path(f"FormContent({key})"),
            params={"$expand": "formHeader", "$format": "json"},
        )
        return dict(_payload(response) or {})

    async def _content_detail(self, entity_set: str, identity: FormIdentity, expand: list[str]) -> dict[str, Any]:
        key = form_key(identity.form_content_id, identity.form_data_id)
        response = await self.client.request(
            "GET",
            self.client.odata_path(f"{entity_set}({key})"),
            params={"$expand": ",".join(expand), "$format": "json"},
        )
        return dict(_payload(response) or {})

    async def get_form_detail(self, identity: FormIdentity) -> dict[str, Any]:
        """
        Load a single-rater (PM) form.

        The base FormContent read must succeed. The review detail is read
        second and stored under ``pmReviewContentDetail.results[0]``.

        Raises:
            PartialLoad: The detail read failed; carries the base document
            TransportError, AuthExpired: The base read failed
        """
        document = await self._form_content(identity)

        try:
            detail = await self._content_detail("FormPMReviewContentDetail", identity, PM_DETAIL_EXPAND)
        except ReviewSyncError as e:
            logger.warning("form_detail_partial", form_data_id=identity.form_data_id, error=str(e))
            raise PartialLoad(document, [f"FormPMReviewContentDetail: {e}"]) from e

        document["pmReviewContentDetail"] = {"results": [detail]}
        logger.info("form_detail_loaded", kind="pm", form_data_id=identity.form_data_id)
        return document

    async def get_form_360_detail(self, identity: FormIdentity) -> dict[str, Any]:
        """
        Load a multi-rater (360) form in two detail steps merged into one document.

        Raises:
            PartialLoad: One or both detail steps failed; carries what loaded
            TransportError, AuthExpired: The base read failed
        """
        document = await self._form_content(identity)
        failures = []

        for step, expand in (("light", MULTI_RATER_LIGHT_EXPAND), ("heavy", MULTI_RATER_HEAVY_EXPAND)):
            try:
                detail = await self._content_detail("Form360ReviewContentDetail", identity, expand)
            except ReviewSyncError as e:
                logger.warning(
                    "form_360_detail_partial",
                    form_data_id=identity.form_data_id,
                    step=step,
                    error=str(e),
                )
                failures.append(f"Form360ReviewContentDetail ({step}): {e}")
                continue
            detail.pop("__metadata", None)
            document.update(detail)

        if failures:
            raise PartialLoad(document, failures)

        logger.info("form_detail_loaded", kind="360", form_data_id=identity.form_data_id)
        return document

    async def get_form_route_map(self, form_data_id: int) -> dict[str, Any]:
        """Load the raw process route map of a form."""
        response = await self.client.request(
            "GET",
            self.client.odata_path(f"FormRouteMap(formDataId={int64_literal(form_data_id)})"),
            params={"$expand": "routeStep,routeStep/routeSubStep", "$format": "json"},
        )
        return dict(_payload(response) or {})

    async def upsert(self, document: dict[str, Any]) -> list[UpsertResult]:
        """
        Send a deep-upsert document.

        Raises:
            SaveFailed: Any entity status other than OK
        """
        response = await self.client.request(
            "POST",
            self.client.odata_path("upsert"),
            params={"$format": "json"},
            json=[document],
        )
        upsert_results = [UpsertResult.from_wire(entry) for entry in results(_payload(response))]

        failed = [result for result in upsert_results if not result.ok]
        if failed or not upsert_results:
            logger.error(
                "upsert_rejected",
                statuses=[r.status for r in upsert_results],
                messages=[r.message for r in failed],
            )
            message = failed[0].message if failed and failed[0].message else "Upsert rejected by backend"
            raise SaveFailed(upsert_results, message)

        logger.info("upsert_completed", entities=len(upsert_results))
        return upsert_results

    async def send_to_next_step(self, form_data_id: int, comment: Optional[str] = None) -> None:
        """Advance a PM form to its next process step."""
        params = {"formDataId": int64_literal(form_data_id), "$format": "json"}
        if comment:
            params["comment"] = string_literal(comment)

        response = await self.client.request("GET", self.client.odata_path("sendToNextStep"), params=params)
        result = _payload(response)
        if not _is_success(result):
            raise ActionFailed("sendToNextStep", result)
        logger.info("form_sent_to_next_step", form_data_id=form_data_id)

    async def complete_360(self, form_data_id: int) -> None:
        """Mark a 360 form complete for the current rater."""
        response = await self.client.request(
            "GET",
            self.client.odata_path("complete360"),
            params={"formDataId": int64_literal(form_data_id), "$format": "json"},
        )
        result = _payload(response)
        if not _is_success(result):
            raise ActionFailed("complete360", result)
        logger.info("form_360_completed", form_data_id=form_data_id)
