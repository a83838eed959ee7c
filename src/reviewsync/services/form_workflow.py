"""Open / save / submit orchestration for one review form."""

import asyncio
import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from reviewsync.models.form import FormIdentity, FormKind, RouteStep, UpsertResult
from reviewsync.models.section import NormalizedForm
from reviewsync.services.edit_state import EditStateStore
from reviewsync.services.exceptions import PartialLoad, ReviewSyncError
from reviewsync.services.normalizer import FormSchemaNormalizer
from reviewsync.services.review_service import ReviewService
from reviewsync.services.route_map import parse_route_map
from reviewsync.services.serializer import PayloadSerializer
from reviewsync.utils.logging import get_logger


logger = get_logger(__name__)


@dataclass
class OpenForm:
    """One opened form: normalized snapshot, live edits and display metadata."""

    identity: FormIdentity
    kind: FormKind
    form: NormalizedForm
    edits: EditStateStore
    route_steps: list[RouteStep] = field(default_factory=list)
    load_failures: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.load_failures)


class FormWorkflow:
    """
    Tie the backend service, normalizer and serializer together.

    Example:
        >>> workflow = FormWorkflow(ReviewService(client))
        >>> open_form = await workflow.open(identity, FormKind.PM, actor_user_id="mgr01")
        >>> open_form.edits.set("obj_0_101", "rating", "5")
        >>> await workflow.submit(open_form)
    """

    def __init__(
        self,
        service: ReviewService,
        normalizer: Optional[FormSchemaNormalizer] = None,
        serializer: Optional[PayloadSerializer] = None,
    ):
        self.service = service
        self.normalizer = normalizer or FormSchemaNormalizer()
        self.serializer = serializer or PayloadSerializer()

    async def open(
        self,
        identity: FormIdentity,
        kind: FormKind,
        actor_user_id: Optional[str] = None,
    ) -> OpenForm:
        """
        Load and normalize a form.

        The detail document and the route map are fetched concurrently; both
        finish before normalization starts. A partial detail load or a failed
        route map is recorded on the result instead of failing the open.

        Raises:
            TransportError, AuthExpired: The base form read failed
        """
        if kind is FormKind.PM:
            detail_call = self.service.get_form_detail(identity)
        else:
            detail_call = self.service.get_form_360_detail(identity)

        detail, route_map = await asyncio.gather(
            detail_call,
            self.service.get_form_route_map(identity.form_data_id),
            return_exceptions=True,
        )

        failures: list[str] = []

        if isinstance(detail, PartialLoad):
            failures.extend(detail.failures)
            document = detail.document
        elif isinstance(detail, BaseException):
            raise detail
        else:
            document = detail

        route_steps: list[RouteStep] = []
        if isinstance(route_map, ReviewSyncError):
            logger.warning("route_map_unavailable", form_data_id=identity.form_data_id, error=str(route_map))
            failures.append(f"FormRouteMap: {route_map}")
        elif isinstance(route_map, BaseException):
            raise route_map
        else:
            route_steps = parse_route_map(route_map)

        form = self.normalizer.normalize(copy.deepcopy(document), kind, actor_user_id=actor_user_id)

        logger.info(
            "form_opened",
            kind=kind.value,
            form_data_id=identity.form_data_id,
            sections=len(form.sections),
            route_steps=len(route_steps),
            partial=bool(failures),
        )

        return OpenForm(
            identity=identity,
            kind=kind,
            form=form,
            edits=EditStateStore(form.initial_edits),
            route_steps=route_steps,
            load_failures=failures,
        )

    def build_payload(self, open_form: OpenForm) -> dict[str, Any]:
        """Serialize the current edits of an open form without sending them."""
        return self.serializer.serialize(open_form.form, open_form.edits.snapshot(), open_form.identity)

    async def save(self, open_form: OpenForm) -> list[UpsertResult]:
        """
        Save changed fields.

        Returns:
            Per-entity upsert results; empty when nothing changed (nothing is sent)

        Raises:
            SaveFailed: The backend rejected an entity; edits are kept
        """
        document = self.build_payload(open_form)
        if not self.serializer.has_changes(document):
            logger.info("save_skipped_no_changes", form_data_id=open_form.identity.form_data_id)
            return []

        logger.debug("upsert_document", document=document)
        return await self.service.upsert(document)

    async def submit(self, open_form: OpenForm, comment: Optional[str] = None) -> list[UpsertResult]:
        """
        Save, then advance the form (PM) or complete it for this rater (360).

        The action only runs after the save succeeded.
        """
        saved = await self.save(open_form)

        if open_form.kind is FormKind.PM:
            await self.service.send_to_next_step(open_form.identity.form_data_id, comment=comment)
        else:
            await self.service.complete_360(open_form.identity.form_data_id)

        logger.info("form_submitted", kind=open_form.kind.value, form_data_id=open_form.identity.form_data_id)
        return saved
