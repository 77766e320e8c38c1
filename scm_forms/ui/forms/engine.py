"""Form engine: live, validated, remotely-hydrated state for entity forms.

A :class:`FormEngine` is created per mounted screen.  It owns the form state,
the resolved option lists of select fields and the validation errors, and it
is the only writer of that state: field renderers (including the cascading
School/Class/Division selector) receive ``values`` and call ``set_value``.
Side effects the host must perform (alerts, navigation) are emitted as
:class:`~scm_forms.ui.view.ui_adapter.UiEvent` instances.
"""

from __future__ import annotations

import logging
import re
from collections import ChainMap
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from functools import partial
from types import MappingProxyType
from typing import Any, Callable, Iterable, List, Mapping, Optional

from scm_forms.tools.data_source import DataSource, fetch_record, server_message
from scm_forms.ui.forms.builder import FieldDescriptor, FieldKind, FormBuilder
from scm_forms.ui.forms.normalize import normalize_record, parse_date
from scm_forms.ui.model.lifetime import FetchHandle, Lifetime
from scm_forms.ui.model.options import Option, fetch_remote_options, normalize_option, option_label
from scm_forms.ui.model.rules import (
    SCD_UI_RULES,
    USER_IS_TEACHER_KEY,
    SimpleRuleSpec,
    availability_only,
    evaluate_all_rules,
)
from scm_forms.ui.model.session import SessionContext
from scm_forms.ui.view.ui_adapter import (
    FIELD_CHANGED,
    GO_BACK,
    NAVIGATE,
    NOTIFY,
    OPTIONS_LOADED,
    RECORD_LOADED,
    EmitCallback,
    UiEvent,
    discard_event,
)
from scm_forms.util.constants import (
    SCD_CLASS_FIELD,
    SCD_DIVISION_FIELD,
    SCD_SCHOOL_FIELD,
    FormSettings,
    get_form_settings,
)
from scm_forms.util.decorators import busy_guard

TransformCallback = Callable[[dict, bool], Any]
SuccessCallback = Callable[[Any], None]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TEL_RE = re.compile(r"^[0-9]{10,15}$")

_SCD_LABELS = {
    SCD_SCHOOL_FIELD: "School",
    SCD_CLASS_FIELD: "Class",
    SCD_DIVISION_FIELD: "Division",
}


class FormMode(str, Enum):
    CREATE = "create"
    EDIT = "edit"


@dataclass(frozen=True)
class FormEndpoints:
    """Caller-supplied URLs for one entity."""

    save_url: str
    update_url: str
    fetch_url: str | None = None

    def update_path(self, identifier: Any) -> str:
        return f"{self.update_url.rstrip('/')}/{identifier}"


@dataclass(frozen=True)
class FormSnapshot:
    """Read-only view of everything a renderer needs for one frame."""

    title: str
    submit_label: str
    values: Mapping[str, Any]
    errors: Mapping[str, str]
    options: Mapping[str, tuple[Option, ...]]
    disabled: frozenset[str] = field(default_factory=frozenset)
    hidden: frozenset[str] = field(default_factory=frozenset)
    busy: bool = False
    loading: bool = False


def is_empty(value: Any) -> bool:
    """Return whether *value* counts as "not filled in"."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


class FormEngine:
    """Own the state of one entity form from mount to teardown."""

    def __init__(
        self,
        entity_name: str,
        schema: Iterable[FieldDescriptor | Mapping[str, Any]],
        data_source: DataSource,
        session: SessionContext | None,
        endpoints: FormEndpoints,
        *,
        identifier: Any = None,
        transform: Optional[TransformCallback] = None,
        on_success: Optional[SuccessCallback] = None,
        success_target: str | None = None,
        emit: Optional[EmitCallback] = None,
        settings: FormSettings | None = None,
        rules: Optional[List[SimpleRuleSpec]] = None,
        with_scd: bool = True,
        scd_required: bool = False,
    ) -> None:
        self.entity_name = entity_name
        self.endpoints = endpoints
        self.identifier = None if identifier in (None, "") else identifier
        self._source = data_source
        self._session = session
        self._transform = transform
        self._on_success = on_success
        self._success_target = success_target
        self._emit_cb: EmitCallback = emit or discard_event
        self._settings = settings or get_form_settings()
        self._with_scd = with_scd
        self._scd_required = scd_required and with_scd
        self._rules: List[SimpleRuleSpec] = list(rules or [])
        if with_scd:
            self._rules.extend(SCD_UI_RULES)

        self.builder = FormBuilder(schema)
        self._state: dict[str, Any] = self._default_state()
        self._errors: dict[str, str] = {}
        self._options: dict[str, list[Option]] = {d.name: [] for d in self.builder.select_fields}
        self._rule_disabled: set[str] = set()
        self._hidden: set[str] = set()
        self._busy = False
        self._loading = False
        self._mounted = False
        self._schema_generation = 0
        self._option_handles: list[FetchHandle] = []
        self._lifetime = Lifetime(f"{entity_name} form")

    # ------------------------------------------------------------------
    # Read-only surface
    # ------------------------------------------------------------------

    @property
    def mode(self) -> FormMode:
        return FormMode.EDIT if self.is_edit else FormMode.CREATE

    @property
    def is_edit(self) -> bool:
        return self.identifier is not None

    @property
    def values(self) -> Mapping[str, Any]:
        """Live read-only view of the form state."""
        return MappingProxyType(self._state)

    state = values

    @property
    def errors(self) -> Mapping[str, str]:
        return MappingProxyType(self._errors)

    @property
    def options(self) -> Mapping[str, tuple[Option, ...]]:
        return {name: tuple(opts) for name, opts in self._options.items()}

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def alive(self) -> bool:
        return self._lifetime.alive

    @property
    def session(self) -> SessionContext | None:
        return self._session

    def get(self, name: str, default: Any = None) -> Any:
        return self._state.get(name, default)

    def is_disabled(self, name: str) -> bool:
        if self._busy or name in self._rule_disabled:
            return True
        descriptor = self.builder.get(name)
        return bool(descriptor and descriptor.disabled)

    def is_hidden(self, name: str) -> bool:
        return name in self._hidden

    def display_value(self, name: str) -> str:
        """Return the text a renderer should show for field *name*.

        Select fields show the matching option label, falling back to the
        raw option-reference's ``name``, the raw value, and finally the
        "Select ..." placeholder.
        """
        raw = self._state.get(name)
        descriptor = self.builder.get(name)
        if descriptor is None or not descriptor.is_select:
            return "" if raw is None else str(raw)
        label = option_label(self._options.get(name, []), raw)
        if label is not None:
            return label
        if isinstance(raw, Mapping) and raw.get("name"):
            return str(raw["name"])
        if not is_empty(raw) and not isinstance(raw, Mapping):
            return str(raw)
        return self._settings.message("select_placeholder", label=descriptor.label)

    def snapshot(self) -> FormSnapshot:
        disabled = {d.name for d in self.builder if self.is_disabled(d.name)}
        disabled.update(n for n in self._rule_disabled)
        return FormSnapshot(
            title=f"{'Edit' if self.is_edit else 'Add'} {self.entity_name}",
            submit_label="Update" if self.is_edit else "Save",
            values=dict(self._state),
            errors=dict(self._errors),
            options=self.options,
            disabled=frozenset(disabled),
            hidden=frozenset(self._hidden),
            busy=self._busy,
            loading=self._loading,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def mount(self) -> list[FetchHandle]:
        """Resolve option lists and, in edit mode, start record hydration.

        Must be called from a running event loop when any remote fetch is
        needed.  Calling it again on a mounted form is a no-op.
        """
        if self._mounted:
            return []
        if not self._lifetime.alive:
            raise RuntimeError(f"{self.entity_name} form was unmounted")
        self._mounted = True
        handles = self._resolve_options(self.builder.select_fields)
        if self.is_edit and self.endpoints.fetch_url:
            self._loading = True
            handles.append(
                self._lifetime.spawn(
                    "record",
                    partial(fetch_record, self._source, self.endpoints.fetch_url, str(self.identifier)),
                    apply=self._apply_record,
                    on_error=self._record_failed,
                )
            )
        self._refresh_availability()
        return handles

    async def ready(self) -> None:
        """Wait until every fetch started so far has settled."""
        await self._lifetime.wait()

    def unmount(self) -> None:
        """Cancel pending fetches; late results are discarded."""
        self._lifetime.close()
        self._loading = False

    def replace_schema(self, schema: Iterable[FieldDescriptor | Mapping[str, Any]]) -> list[FetchHandle]:
        """Swap the descriptor list and re-resolve select options.

        Values of fields present in both schemas are kept.  Option fetches
        still pending for the previous schema are cancelled and their late
        results are dropped.
        """
        self.builder = FormBuilder(schema)
        self._schema_generation += 1
        for handle in self._option_handles:
            handle.cancel()
        self._option_handles = []
        defaults = self._default_state()
        for name, value in defaults.items():
            self._state.setdefault(name, value)
        for name in list(self._errors):
            if name not in self.builder:
                self._errors.pop(name)
        self._options = {d.name: [] for d in self.builder.select_fields}
        if not self._mounted:
            return []
        return self._resolve_options(self.builder.select_fields)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set_value(self, name: str, value: Any) -> bool:
        """Write one field; the only mutation path for the form state.

        Returns ``False`` (and leaves the state untouched) while a submit is
        in flight.
        """
        if self._busy:
            logging.debug("%s form is submitting; ignoring change to %s", self.entity_name, name)
            return False
        self._state[name] = value
        self._errors.pop(name, None)
        self._emit(FIELD_CHANGED, name, value=value)
        evaluate_all_rules(
            self._rule_values(),
            self,
            trigger_field=name,
            extra_rule_lists=[self._rules],
            include_scd=False,
        )
        return True

    # rule adapter --------------------------------------------------------
    def show(self, name: str) -> None:
        self._hidden.discard(name)

    def hide(self, name: str) -> None:
        self._hidden.add(name)

    def enable(self, name: str) -> None:
        self._rule_disabled.discard(name)

    def disable(self, name: str) -> None:
        self._rule_disabled.add(name)

    def set_options(self, name: str, options: List[Any]) -> None:
        self._options[name] = [normalize_option(o) for o in options]

    # ------------------------------------------------------------------
    # Validation & submit
    # ------------------------------------------------------------------

    def validate(self) -> bool:
        """Recompute validation errors; return ``True`` when there are none."""
        errors: dict[str, str] = {}
        for descriptor in self.builder:
            value = self._state.get(descriptor.name)
            if descriptor.kind is FieldKind.PASSWORD and self.is_edit and is_empty(value):
                continue
            if is_empty(value):
                if descriptor.required:
                    errors[descriptor.name] = self._settings.message("required", label=descriptor.label)
                continue
            problem = self._format_error(descriptor, value)
            if problem:
                errors[descriptor.name] = problem
        if self._scd_required:
            for name in (SCD_CLASS_FIELD, SCD_DIVISION_FIELD):
                if name not in self.builder and is_empty(self._state.get(name)):
                    errors[name] = self._settings.message("required", label=_SCD_LABELS[name])
        self._errors = errors
        return not errors

    def _format_error(self, descriptor: FieldDescriptor, value: Any) -> str | None:
        text = str(value).strip()
        kind = descriptor.kind
        if descriptor.max_length is not None and len(str(value)) > descriptor.max_length:
            return self._settings.message("too_long", label=descriptor.label, max_length=descriptor.max_length)
        if kind is FieldKind.EMAIL and not _EMAIL_RE.match(text):
            return self._settings.message("invalid_email", label=descriptor.label)
        if kind is FieldKind.TEL and not _TEL_RE.match(text):
            return self._settings.message("invalid_tel", label=descriptor.label)
        if kind is FieldKind.NUMBER and not isinstance(value, (int, float)):
            try:
                float(text)
            except ValueError:
                return self._settings.message("invalid_number", label=descriptor.label)
        if kind is FieldKind.DATE:
            parsed = parse_date(value)
            if parsed is None:
                return self._settings.message("invalid_date", label=descriptor.label)
            if parsed > date.today():
                return self._settings.message("future_date", label=descriptor.label)
        return None

    def build_payload(self) -> Any:
        """Return the body that :meth:`submit` would send."""
        data = self._without_blank_passwords(dict(self._state))
        if self._transform is not None:
            payload = self._transform(data, self.is_edit)
            if isinstance(payload, dict):
                payload = self._without_blank_passwords(payload)
            return payload
        return data

    def _without_blank_passwords(self, data: dict) -> dict:
        if not self.is_edit:
            return data
        for descriptor in self.builder:
            if descriptor.kind is FieldKind.PASSWORD and is_empty(data.get(descriptor.name)):
                data.pop(descriptor.name, None)
        return data

    @busy_guard("_busy")
    async def submit(self) -> bool:
        """Validate and dispatch create/update.

        Returns ``True`` on a successful round-trip.  Re-entrant calls while a
        submit is pending return ``False`` without doing anything.
        """
        if not self.validate():
            logging.debug("%s form has validation errors: %s", self.entity_name, sorted(self._errors))
            return False

        payload = self.build_payload()
        action = "update" if self.is_edit else "save"
        try:
            if self.is_edit:
                response = await self._source.put(self.endpoints.update_path(self.identifier), payload)
            else:
                response = await self._source.post(self.endpoints.save_url, payload)
        except Exception as exc:
            logging.error("Failed to %s %s", action, self.entity_name, exc_info=True)
            if self._lifetime.alive:
                message = server_message(exc) or self._settings.message(
                    "submit_failed", action=action, entity=self.entity_name
                )
                self._emit(NOTIFY, "submit", level="error", title="Error", message=message)
            return False

        if not self._lifetime.alive:
            logging.debug("%s form unmounted during submit; skipping success handling", self.entity_name)
            return True
        self._emit(
            NOTIFY,
            "submit",
            level="success",
            title="Success",
            message=self._settings.message(
                "submit_success", entity=self.entity_name, action="updated" if self.is_edit else "saved"
            ),
        )
        if self._on_success is not None:
            self._on_success(response)
        if self._success_target:
            self._emit(NAVIGATE, "submit", target=self._success_target)
        else:
            self._emit(GO_BACK, "submit")
        return True

    def cancel(self) -> bool:
        """Leave the form; refused while a submit is in flight."""
        if self._busy:
            return False
        self._emit(GO_BACK, "cancel")
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _default_state(self) -> dict[str, Any]:
        state = self.builder.build_state()
        if self._with_scd:
            for name in (SCD_SCHOOL_FIELD, SCD_CLASS_FIELD, SCD_DIVISION_FIELD):
                state.setdefault(name, "")
        return state

    def _rule_values(self) -> Mapping[str, Any]:
        context = {USER_IS_TEACHER_KEY: bool(self._session and self._session.is_teacher)}
        return ChainMap(context, self._state)

    def _refresh_availability(self) -> None:
        evaluate_all_rules(
            self._rule_values(),
            self,
            extra_rule_lists=[availability_only(self._rules)],
            include_scd=False,
        )

    def _resolve_options(self, descriptors: Iterable[FieldDescriptor]) -> list[FetchHandle]:
        handles: list[FetchHandle] = []
        generation = self._schema_generation
        for descriptor in descriptors:
            name = descriptor.name
            if descriptor.static_choices:
                self._options[name] = list(descriptor.static_choices)
                continue
            remote = descriptor.remote
            if remote is None:
                self._options[name] = []
                continue
            handles.append(
                self._lifetime.spawn(
                    f"options:{name}",
                    partial(
                        fetch_remote_options,
                        self._source,
                        remote,
                        self._session,
                        self._settings,
                        {"id": self.identifier},
                    ),
                    apply=partial(self._apply_options, generation, name),
                    on_error=partial(self._options_failed, generation, name),
                )
            )
        self._option_handles.extend(handles)
        return handles

    def _stale_options(self, generation: int, name: str) -> bool:
        if generation == self._schema_generation and name in self.builder:
            return False
        logging.debug("Dropping options for %s fetched under a replaced schema", name)
        return True

    def _apply_options(self, generation: int, name: str, options: list[Option]) -> None:
        if self._stale_options(generation, name):
            return
        self._options[name] = list(options)
        self._emit(OPTIONS_LOADED, name, count=len(options))

    def _options_failed(self, generation: int, name: str, error: BaseException) -> None:
        if self._stale_options(generation, name):
            return
        logging.warning("Failed to fetch select options for %s", name, exc_info=error)
        self._options[name] = []

    def _apply_record(self, raw: Any) -> None:
        record = normalize_record(raw if isinstance(raw, Mapping) else {}, self.builder.descriptors)
        state = self._default_state()
        state.update(record)
        self._state.clear()
        self._state.update(state)
        self._errors.clear()
        self._loading = False
        self._emit(RECORD_LOADED, "record", identifier=self.identifier)
        self._refresh_availability()

    def _record_failed(self, error: BaseException) -> None:
        logging.error(
            "Failed to fetch %s %s", self.entity_name, self.identifier, exc_info=error
        )
        self._loading = False
        self._emit(
            NOTIFY,
            "record",
            level="error",
            title="Error",
            message=self._settings.message("fetch_failed", entity=self.entity_name),
        )

    def _emit(self, kind: str, source: str, **payload: Any) -> None:
        self._emit_cb(UiEvent(kind=kind, source=str(source), payload=dict(payload)))


async def render(
    schema: Iterable[FieldDescriptor | Mapping[str, Any]],
    mode: FormMode | str,
    identifier: Any = None,
    *,
    entity_name: str,
    data_source: DataSource,
    session: SessionContext | None,
    endpoints: FormEndpoints,
    wait: bool = True,
    **options: Any,
) -> FormEngine:
    """Build and mount a :class:`FormEngine`.

    ``mode`` must agree with ``identifier``: edit mode needs one, create mode
    must not receive one.  With ``wait=True`` the call returns once option
    and record fetches have settled (failures included).
    """
    mode = FormMode(mode)
    if mode is FormMode.EDIT and identifier in (None, ""):
        raise ValueError("Edit mode requires an identifier")
    if mode is FormMode.CREATE and identifier not in (None, ""):
        raise ValueError("Create mode does not take an identifier")
    engine = FormEngine(
        entity_name,
        schema,
        data_source,
        session,
        endpoints,
        identifier=identifier,
        **options,
    )
    engine.mount()
    if wait:
        await engine.ready()
    return engine


__all__ = [
    "FormEndpoints",
    "FormEngine",
    "FormMode",
    "FormSnapshot",
    "is_empty",
    "render",
]
