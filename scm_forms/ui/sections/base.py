"""Base abstraction for registered entity form presets."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from scm_forms.tools.data_source import DataSource
from scm_forms.ui.forms.builder import FieldDescriptor, coerce_descriptors
from scm_forms.ui.forms.engine import FormEndpoints, FormEngine, FormMode, render
from scm_forms.ui.model.session import SessionContext


class FormPreset:
    """Fields, endpoints and submit hooks of one entity form.

    Subclasses declare ``fields`` in the screen-level mapping shape and may
    override :meth:`transform` to reshape the payload before submit.
    """

    preset_id: str = ""
    entity_name: str = ""
    fields: Sequence[Mapping[str, Any]] = ()
    endpoints: FormEndpoints | None = None
    success_target: str | None = None
    with_scd: bool = False

    # -- schema ---------------------------------------------------------
    def descriptors(self) -> list[FieldDescriptor]:
        return coerce_descriptors(self.fields)

    def transform(self, data: dict[str, Any], is_edit: bool) -> Any:
        """Return the request body for *data*; identity by default."""
        return data

    def engine_options(self) -> dict[str, Any]:
        return {
            "transform": self.transform,
            "success_target": self.success_target,
            "with_scd": self.with_scd,
        }

    # -- construction ---------------------------------------------------
    def _require_endpoints(self) -> FormEndpoints:
        if self.endpoints is None:
            raise ValueError(f"Preset {self.preset_id} has no endpoints")
        return self.endpoints

    def build(
        self,
        data_source: DataSource,
        session: SessionContext | None,
        *,
        identifier: Any = None,
        **overrides: Any,
    ) -> FormEngine:
        """Return an unmounted engine for this preset."""
        options = self.engine_options()
        options.update(overrides)
        return FormEngine(
            self.entity_name,
            self.descriptors(),
            data_source,
            session,
            self._require_endpoints(),
            identifier=identifier,
            **options,
        )

    async def render(
        self,
        mode: FormMode | str,
        data_source: DataSource,
        session: SessionContext | None,
        *,
        identifier: Any = None,
        wait: bool = True,
        **overrides: Any,
    ) -> FormEngine:
        """Build and mount an engine for this preset."""
        options = self.engine_options()
        options.update(overrides)
        return await render(
            self.descriptors(),
            mode,
            identifier,
            entity_name=self.entity_name,
            data_source=data_source,
            session=session,
            endpoints=self._require_endpoints(),
            wait=wait,
            **options,
        )


__all__ = ["FormPreset"]
