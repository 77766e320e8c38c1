import asyncio
import logging

import pytest

from scm_forms.tools.data_source import DataSourceError
from scm_forms.ui.forms.builder import FieldDescriptor, FieldKind
from scm_forms.ui.forms.engine import FormEndpoints, FormEngine, FormMode, render
from scm_forms.ui.model.options import Option, static_options
from scm_forms.ui.model.session import SessionContext
from scm_forms.ui.view.ui_adapter import (
    FIELD_CHANGED,
    GO_BACK,
    NAVIGATE,
    NOTIFY,
    OPTIONS_LOADED,
    RECORD_LOADED,
    EventRecorder,
)
from scm_forms.util.constants import FormSettings

SETTINGS = FormSettings()
ENDPOINTS = FormEndpoints(
    save_url="/api/users/save",
    update_url="/api/users/update",
    fetch_url="/api/users/getById",
)

STUDENT_SCHEMA = [
    FieldDescriptor("firstName", "First Name", required=True),
    FieldDescriptor("password", "Password", kind=FieldKind.PASSWORD, required=True),
    FieldDescriptor("dob", "Date of Birth", kind=FieldKind.DATE),
    FieldDescriptor("rollNo", "Roll No", kind=FieldKind.NUMBER),
]


def make_engine(source, schema, *, identifier=None, session=None, **kwargs):
    recorder = EventRecorder()
    engine = FormEngine(
        "Student",
        schema,
        source,
        session or SessionContext(),
        ENDPOINTS,
        identifier=identifier,
        emit=recorder,
        settings=SETTINGS,
        **kwargs,
    )
    return engine, recorder


def render_student(source, mode, identifier=None, **kwargs):
    recorder = EventRecorder()
    engine = asyncio.run(
        render(
            STUDENT_SCHEMA,
            mode,
            identifier,
            entity_name="Student",
            data_source=source,
            session=kwargs.pop("session", SessionContext()),
            endpoints=ENDPOINTS,
            emit=recorder,
            settings=SETTINGS,
            **kwargs,
        )
    )
    return engine, recorder


# ---- initialization -----------------------------------------------------


def test_default_state_per_kind(fake_source):
    schema = [
        FieldDescriptor("firstName", "First Name"),
        FieldDescriptor("gender", "Gender", kind=FieldKind.SELECT),
        FieldDescriptor("notes", "Notes", kind=FieldKind.TEXTAREA),
    ]
    engine, _ = make_engine(fake_source(), schema, with_scd=False)
    assert dict(engine.values) == {"firstName": "", "gender": None, "notes": ""}
    assert engine.mode is FormMode.CREATE


def test_scd_fields_are_part_of_the_state(fake_source):
    engine, _ = make_engine(fake_source(), [FieldDescriptor("firstName", "First Name")])
    assert engine.values["schoolId"] == ""
    assert engine.values["classId"] == ""
    assert engine.values["divisionId"] == ""


def test_create_mode_makes_no_record_request(fake_source):
    source = fake_source()
    engine, _ = render_student(source, FormMode.CREATE)
    assert source.calls == []
    assert engine.values["firstName"] == ""


def test_edit_mode_hydrates_and_normalizes_record(fake_source):
    record = {
        "data": {
            "firstName": "Asha",
            "password": "stored-hash",
            "date_of_birth": "2010-05-04T00:00:00Z",
            "classId": 3,
            "divisionId": None,
            "schoolId": 1,
            "rollNo": 17,
        }
    }
    source = fake_source({("get", "/api/users/getById/42"): record})
    engine, recorder = render_student(source, FormMode.EDIT, 42)

    assert engine.values["firstName"] == "Asha"
    assert engine.values["password"] == ""
    assert engine.values["dob"] == "2010-05-04"
    assert engine.values["classId"] == "3"
    assert engine.values["divisionId"] == ""
    assert engine.values["schoolId"] == "1"
    assert engine.values["rollNo"] == "17"
    assert engine.loading is False
    assert recorder.last(RECORD_LOADED).payload == {"identifier": 42}
    assert not engine.is_disabled("divisionId")


def test_edit_mode_falls_back_to_query_style_fetch(fake_source):
    source = fake_source({("get", "/api/users/getById?id=42"): {"data": {"firstName": "Asha"}}})
    engine, _ = render_student(source, FormMode.EDIT, "42")
    assert source.urls("get") == ["/api/users/getById/42", "/api/users/getById?id=42"]
    assert engine.values["firstName"] == "Asha"


def test_record_fetch_failure_notifies_and_keeps_defaults(fake_source, caplog):
    source = fake_source()
    with caplog.at_level(logging.ERROR):
        engine, recorder = render_student(source, FormMode.EDIT, 42)
    notify = recorder.last(NOTIFY)
    assert notify is not None
    assert notify.payload["message"] == "Failed to fetch Student details."
    assert notify.payload["level"] == "error"
    assert engine.values["firstName"] == ""
    assert engine.loading is False
    assert "Failed to fetch Student 42" in caplog.text


def test_render_rejects_mode_identifier_mismatch(fake_source):
    with pytest.raises(ValueError):
        render_student(fake_source(), FormMode.EDIT)
    with pytest.raises(ValueError):
        render_student(fake_source(), FormMode.CREATE, 5)


# ---- option resolution --------------------------------------------------


def test_static_options_are_used_without_network(fake_source):
    source = fake_source()
    schema = [
        FieldDescriptor(
            "gender",
            "Gender",
            kind=FieldKind.SELECT,
            source=static_options([{"label": "Male", "value": "M"}, {"id": "F", "name": "Female"}]),
        )
    ]
    engine, _ = make_engine(source, schema, with_scd=False)
    assert engine.mount() == []
    assert engine.options["gender"] == (Option("Male", "M"), Option("Female", "F"))
    assert source.calls == []


def test_remote_post_options_substitute_account_and_send_paging_body(fake_source, page_request):
    source = fake_source(
        {
            ("post", "/api/roles/getAll/7"): {
                "data": {"content": [{"id": 2, "name": "Student"}, {"id": 3, "name": "Monitor"}]}
            }
        }
    )
    session = SessionContext()
    session.login(7, {"type": "ADMIN"})
    schema = [
        {
            "name": "role",
            "label": "Role",
            "type": "select",
            "optionsUrl": "/api/roles/getAll/{accountId}",
            "optionsMethod": "post",
        }
    ]

    async def scenario():
        engine, recorder = make_engine(source, schema, session=session, with_scd=False)
        engine.mount()
        await engine.ready()
        return engine, recorder

    engine, recorder = asyncio.run(scenario())
    assert source.calls == [("post", "/api/roles/getAll/7", page_request)]
    assert engine.options["role"] == (Option("Student", 2), Option("Monitor", 3))
    assert recorder.last(OPTIONS_LOADED).payload == {"count": 2}


def test_remote_get_options_append_query(fake_source):
    source = fake_source(
        {("get", "/api/subjects?active=1&q=a+b"): [{"label": "Math", "value": "m"}, "Art"]}
    )
    schema = [
        {
            "name": "subject",
            "label": "Subject",
            "type": "select",
            "optionsUrl": "/api/subjects?active=1",
            "optionsQuery": {"q": "a b"},
        }
    ]

    async def scenario():
        engine, _ = make_engine(source, schema, with_scd=False)
        engine.mount()
        await engine.ready()
        return engine

    engine = asyncio.run(scenario())
    assert engine.options["subject"] == (Option("Math", "m"), Option("Art", "Art"))


def test_failed_option_fetch_only_empties_its_own_field(fake_source, caplog):
    source = fake_source(
        {
            ("get", "/api/subjects"): [{"id": 1, "name": "Math"}],
            ("get", "/api/clubs"): DataSourceError("down", status=500),
        }
    )
    schema = [
        {"name": "subject", "label": "Subject", "type": "select", "optionsUrl": "/api/subjects"},
        {"name": "club", "label": "Club", "type": "select", "optionsUrl": "/api/clubs"},
    ]

    async def scenario():
        engine, _ = make_engine(source, schema, with_scd=False)
        engine.mount()
        await engine.ready()
        return engine

    with caplog.at_level(logging.WARNING):
        engine = asyncio.run(scenario())
    assert engine.options["subject"] == (Option("Math", 1),)
    assert engine.options["club"] == ()
    assert "Failed to fetch select options for club" in caplog.text


def test_unmount_discards_late_option_results(fake_source):
    source = fake_source({("get", "/api/subjects"): [{"id": 1, "name": "Math"}]})
    schema = [{"name": "subject", "label": "Subject", "type": "select", "optionsUrl": "/api/subjects"}]

    async def scenario():
        release, entered = source.gate("get", "/api/subjects")
        engine, recorder = make_engine(source, schema, with_scd=False)
        handles = engine.mount()
        await entered.wait()
        engine.unmount()
        release.set()
        for _ in range(3):
            await asyncio.sleep(0)
        return engine, recorder, handles

    engine, recorder, handles = asyncio.run(scenario())
    assert engine.alive is False
    assert engine.options["subject"] == ()
    assert recorder.of_kind(OPTIONS_LOADED) == []
    assert handles[0].cancelled


def test_unmount_discards_late_record(fake_source):
    source = fake_source({("get", "/api/users/getById/42"): {"data": {"firstName": "Asha"}}})

    async def scenario():
        release, entered = source.gate("get", "/api/users/getById/42")
        engine, recorder = make_engine(source, STUDENT_SCHEMA, identifier=42)
        engine.mount()
        await entered.wait()
        loading = engine.loading
        engine.unmount()
        release.set()
        for _ in range(3):
            await asyncio.sleep(0)
        return engine, recorder, loading

    engine, recorder, loading = asyncio.run(scenario())
    assert loading is True
    assert engine.loading is False
    assert engine.values["firstName"] == ""
    assert engine.values["dob"] == ""
    assert recorder.of_kind(RECORD_LOADED) == []
    assert recorder.of_kind(NOTIFY) == []
    assert source.urls("get") == ["/api/users/getById/42"]


def test_replace_schema_drops_options_fetched_for_previous_schema(fake_source):
    source = fake_source({("get", "/api/old"): [{"id": 1, "name": "Stale"}]})
    old_schema = [{"name": "subject", "label": "Subject", "type": "select", "optionsUrl": "/api/old"}]
    new_schema = [
        {"name": "subject", "label": "Subject", "type": "select", "options": [{"label": "Fresh", "value": 2}]}
    ]

    async def scenario():
        release, entered = source.gate("get", "/api/old")
        engine, recorder = make_engine(source, old_schema, with_scd=False)
        old_handles = engine.mount()
        await entered.wait()
        engine.replace_schema(new_schema)
        before = engine.options["subject"]
        release.set()
        for _ in range(3):
            await asyncio.sleep(0)
        return engine, recorder, before, old_handles

    engine, recorder, before, old_handles = asyncio.run(scenario())
    assert before == (Option("Fresh", 2),)
    assert engine.options["subject"] == (Option("Fresh", 2),)
    assert recorder.of_kind(OPTIONS_LOADED) == []
    assert old_handles[0].cancelled


def test_replace_schema_does_not_restore_removed_select(fake_source):
    source = fake_source({("get", "/api/old"): [{"id": 1, "name": "Stale"}]})
    old_schema = [{"name": "subject", "label": "Subject", "type": "select", "optionsUrl": "/api/old"}]

    async def scenario():
        release, entered = source.gate("get", "/api/old")
        engine, _ = make_engine(source, old_schema, with_scd=False)
        engine.mount()
        await entered.wait()
        engine.replace_schema([FieldDescriptor("firstName", "First Name")])
        release.set()
        for _ in range(3):
            await asyncio.sleep(0)
        return engine

    engine = asyncio.run(scenario())
    assert dict(engine.options) == {}


def test_replace_schema_fetches_options_for_new_schema(fake_source):
    source = fake_source(
        {
            ("get", "/api/old"): [{"id": 1, "name": "Old"}],
            ("get", "/api/new"): [{"id": 2, "name": "New"}],
        }
    )

    async def scenario():
        engine, _ = make_engine(
            source,
            [{"name": "subject", "label": "Subject", "type": "select", "optionsUrl": "/api/old"}],
            with_scd=False,
        )
        engine.mount()
        await engine.ready()
        engine.replace_schema(
            [{"name": "subject", "label": "Subject", "type": "select", "optionsUrl": "/api/new"}]
        )
        await engine.ready()
        return engine

    engine = asyncio.run(scenario())
    assert engine.options["subject"] == (Option("New", 2),)
    assert source.urls("get") == ["/api/old", "/api/new"]


# ---- input handling and rules --------------------------------------------


def test_set_value_clears_field_error_and_emits_change(fake_source):
    engine, recorder = make_engine(
        fake_source(), [FieldDescriptor("firstName", "First Name", required=True)], with_scd=False
    )
    assert engine.validate() is False
    assert "firstName" in engine.errors
    assert engine.set_value("firstName", "Asha") is True
    assert "firstName" not in engine.errors
    change = recorder.last(FIELD_CHANGED)
    assert change.source == "firstName"
    assert change.payload == {"value": "Asha"}


def test_school_change_resets_class_and_division(fake_source):
    engine, _ = make_engine(fake_source(), [FieldDescriptor("firstName", "First Name")])
    engine.mount()
    assert engine.is_disabled("divisionId")

    engine.set_value("schoolId", "1")
    assert not engine.is_disabled("divisionId")
    engine.set_value("classId", "10")
    engine.set_value("divisionId", "100")

    engine.set_value("schoolId", "2")
    assert engine.values["classId"] == ""
    assert engine.values["divisionId"] == ""

    engine.set_value("schoolId", "")
    assert engine.is_disabled("divisionId")


def test_class_choice_unlocks_division_for_admins(fake_source):
    engine, _ = make_engine(fake_source(), [FieldDescriptor("firstName", "First Name")])
    engine.mount()
    engine.set_value("classId", "10")
    assert not engine.is_disabled("divisionId")


def test_teacher_division_is_never_locked(fake_source):
    session = SessionContext()
    session.login(3, {"type": "Teacher", "schoolId": 5})
    engine, _ = make_engine(fake_source(), [FieldDescriptor("firstName", "First Name")], session=session)
    engine.mount()
    assert not engine.is_disabled("divisionId")


def test_replace_schema_keeps_shared_values(fake_source):
    engine, _ = make_engine(fake_source(), [FieldDescriptor("firstName", "First Name")], with_scd=False)
    engine.set_value("firstName", "Asha")
    engine.replace_schema(
        [FieldDescriptor("firstName", "First Name"), FieldDescriptor("lastName", "Last Name")]
    )
    assert engine.values["firstName"] == "Asha"
    assert engine.values["lastName"] == ""


# ---- validation ------------------------------------------------------------


def test_validation_messages_per_kind(fake_source):
    schema = [
        FieldDescriptor("firstName", "First Name", required=True),
        FieldDescriptor("email", "Email", kind=FieldKind.EMAIL),
        FieldDescriptor("phone", "Phone", kind=FieldKind.TEL),
        FieldDescriptor("mobile", "Mobile", kind=FieldKind.NUMBER, required=True),
        FieldDescriptor("age", "Age", kind=FieldKind.NUMBER),
        FieldDescriptor("dob", "Date of Birth", kind=FieldKind.DATE),
        FieldDescriptor("tags", "Tags", kind=FieldKind.SELECT, required=True),
    ]
    engine, _ = make_engine(fake_source(), schema, with_scd=False)
    engine.set_value("firstName", "   ")
    engine.set_value("email", "not-an-email")
    engine.set_value("phone", "12345")
    engine.set_value("mobile", 0)
    engine.set_value("age", "12a")
    engine.set_value("dob", "2999-01-01")
    engine.set_value("tags", [])

    assert engine.validate() is False
    assert dict(engine.errors) == {
        "firstName": "First Name is required.",
        "email": "Email must be a valid email address.",
        "phone": "Phone must contain 10 to 15 digits.",
        "age": "Age must be a number.",
        "dob": "Date of Birth cannot be in the future.",
        "tags": "Tags is required.",
    }


def test_valid_values_pass_validation(fake_source):
    schema = [
        FieldDescriptor("email", "Email", kind=FieldKind.EMAIL, required=True),
        FieldDescriptor("phone", "Phone", kind=FieldKind.TEL, required=True),
        FieldDescriptor("dob", "Date of Birth", kind=FieldKind.DATE, required=True),
    ]
    engine, _ = make_engine(fake_source(), schema, with_scd=False)
    engine.set_value("email", "asha@example.com")
    engine.set_value("phone", "9876543210")
    engine.set_value("dob", "2010-05-04")
    assert engine.validate() is True
    assert dict(engine.errors) == {}


def test_password_is_optional_when_editing(fake_source):
    engine, _ = make_engine(fake_source(), STUDENT_SCHEMA, identifier=42, with_scd=False)
    engine.set_value("firstName", "Asha")
    assert engine.validate() is True


def test_scd_required_flags_missing_class_and_division(fake_source):
    engine, _ = make_engine(
        fake_source(), [FieldDescriptor("firstName", "First Name")], scd_required=True
    )
    assert engine.validate() is False
    assert engine.errors["classId"] == "Class is required."
    assert engine.errors["divisionId"] == "Division is required."


# ---- submit ----------------------------------------------------------------


def test_create_submit_posts_and_navigates(fake_source):
    source = fake_source({("post", "/api/users/save"): {"id": 9}})
    responses = []
    engine, recorder = make_engine(
        source,
        [FieldDescriptor("firstName", "First Name", required=True)],
        with_scd=False,
        on_success=responses.append,
        success_target="StudentList",
    )
    engine.set_value("firstName", "Asha")

    assert asyncio.run(engine.submit()) is True
    assert source.calls == [("post", "/api/users/save", {"firstName": "Asha"})]
    assert responses == [{"id": 9}]
    assert recorder.last(NOTIFY).payload["message"] == "Student saved successfully!"
    assert recorder.last().kind == NAVIGATE
    assert recorder.last().payload == {"target": "StudentList"}


def test_update_submit_puts_without_blank_password(fake_source):
    source = fake_source({("put", "/api/users/update/42"): {"ok": True}})
    seen = []

    def transform(data, is_edit):
        seen.append(is_edit)
        return dict(data, type="STUDENT")

    engine, recorder = make_engine(source, STUDENT_SCHEMA, identifier=42, with_scd=False, transform=transform)
    engine.set_value("firstName", "Asha")

    assert asyncio.run(engine.submit()) is True
    method, url, body = source.calls[0]
    assert (method, url) == ("put", "/api/users/update/42")
    assert "password" not in body
    assert body["type"] == "STUDENT"
    assert seen == [True]
    assert recorder.last(NOTIFY).payload["message"] == "Student updated successfully!"
    assert recorder.last().kind == GO_BACK


def test_submit_failure_surfaces_server_message(fake_source):
    error = DataSourceError("Bad Request", status=400, payload={"message": "Email already exists"})
    source = fake_source({("post", "/api/users/save"): error})
    engine, recorder = make_engine(source, [FieldDescriptor("firstName", "First Name")], with_scd=False)
    engine.set_value("firstName", "Asha")

    assert asyncio.run(engine.submit()) is False
    assert recorder.last(NOTIFY).payload["message"] == "Email already exists"
    assert engine.values["firstName"] == "Asha"
    assert engine.busy is False


def test_submit_failure_without_server_message_uses_generic_text(fake_source):
    source = fake_source({("put", "/api/users/update/42"): DataSourceError("boom")})
    engine, recorder = make_engine(source, [FieldDescriptor("firstName", "First Name")], identifier=42, with_scd=False)
    assert asyncio.run(engine.submit()) is False
    assert recorder.last(NOTIFY).payload["message"] == "Failed to update Student."


def test_invalid_form_is_not_submitted(fake_source):
    source = fake_source()
    engine, recorder = make_engine(
        source, [FieldDescriptor("firstName", "First Name", required=True)], with_scd=False
    )
    assert asyncio.run(engine.submit()) is False
    assert source.calls == []
    assert recorder.of_kind(NOTIFY) == []


def test_second_submit_is_ignored_while_first_is_pending(fake_source):
    source = fake_source({("post", "/api/users/save"): {"ok": True}})

    async def scenario():
        release, entered = source.gate("post", "/api/users/save")
        engine, _ = make_engine(source, [FieldDescriptor("firstName", "First Name")], with_scd=False)
        first = asyncio.ensure_future(engine.submit())
        await entered.wait()
        busy = engine.busy
        second = await engine.submit()
        frozen = engine.set_value("firstName", "changed")
        cancelled = engine.cancel()
        release.set()
        return engine, busy, await first, second, frozen, cancelled

    engine, busy, first, second, frozen, cancelled = asyncio.run(scenario())
    assert busy is True
    assert first is True
    assert second is False
    assert frozen is False
    assert cancelled is False
    assert engine.values["firstName"] == ""
    assert engine.busy is False
    assert len(source.calls) == 1


def test_busy_flag_is_released_when_transform_raises(fake_source):
    def broken(data, is_edit):
        raise ValueError("bad transform")

    source = fake_source()
    engine, _ = make_engine(source, [FieldDescriptor("firstName", "First Name")], with_scd=False, transform=broken)
    with pytest.raises(ValueError):
        asyncio.run(engine.submit())
    assert engine.busy is False
    assert source.calls == []


def test_cancel_goes_back_when_idle(fake_source):
    engine, recorder = make_engine(fake_source(), [FieldDescriptor("firstName", "First Name")], with_scd=False)
    assert engine.cancel() is True
    assert recorder.last().kind == GO_BACK


# ---- display -----------------------------------------------------------------


def test_display_value_fallbacks(fake_source):
    schema = [
        FieldDescriptor(
            "gender",
            "Gender",
            kind=FieldKind.SELECT,
            source=static_options([{"label": "Male", "value": "M"}]),
        )
    ]
    engine, _ = make_engine(fake_source(), schema, with_scd=False)
    engine.mount()
    assert engine.display_value("gender") == "Select Gender"
    engine.set_value("gender", "M")
    assert engine.display_value("gender") == "Male"
    engine.set_value("gender", {"value": "M"})
    assert engine.display_value("gender") == "Male"
    engine.set_value("gender", {"id": 9, "name": "Other"})
    assert engine.display_value("gender") == "Other"
    engine.set_value("gender", "X")
    assert engine.display_value("gender") == "X"


def test_snapshot_titles_follow_mode(fake_source):
    create, _ = make_engine(fake_source(), STUDENT_SCHEMA, with_scd=False)
    edit, _ = make_engine(fake_source(), STUDENT_SCHEMA, identifier=42, with_scd=False)
    assert (create.snapshot().title, create.snapshot().submit_label) == ("Add Student", "Save")
    assert (edit.snapshot().title, edit.snapshot().submit_label) == ("Edit Student", "Update")
    assert edit.snapshot().values["firstName"] == ""
