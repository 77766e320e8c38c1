"""Student add/edit form."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from scm_forms.ui.forms.engine import FormEndpoints

from . import register_preset
from .base import FormPreset

DEFAULT_STUDENT_ROLE = {"id": 2, "name": "Student"}


def _to_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        logging.debug("Cannot convert %r to int; sending null", value)
        return None


def _role_reference(role: Any) -> dict[str, Any]:
    if isinstance(role, Mapping) and "id" in role:
        return {"id": role.get("id"), "name": role.get("name")}
    if role not in (None, ""):
        return {"id": _to_int(role), "name": None}
    return dict(DEFAULT_STUDENT_ROLE)


@register_preset("student")
class StudentForm(FormPreset):
    entity_name = "Student"
    fields = (
        {"name": "userName", "label": "User Name", "type": "text", "required": True, "maxLength": 255},
        {"name": "password", "label": "Password", "type": "password", "required": True, "maxLength": 255},
        {"name": "firstName", "label": "First Name", "type": "text", "required": True, "maxLength": 255},
        {"name": "lastName", "label": "Last Name", "type": "text", "required": True, "maxLength": 255},
        {"name": "email", "label": "Email", "type": "email", "required": True, "maxLength": 255},
        {"name": "mobile", "label": "Mobile", "type": "tel", "required": True},
        {"name": "address", "label": "Address", "type": "text", "required": False},
        {"name": "dob", "label": "Date of Birth", "type": "date", "required": True},
        {
            "name": "role",
            "label": "Role",
            "type": "select",
            "optionsUrl": "/api/roles/getAll/{accountId}",
            "optionsMethod": "post",
            "required": True,
        },
        {"name": "rollNo", "label": "Roll No", "type": "number", "required": True},
    )
    endpoints = FormEndpoints(
        save_url="/api/users/save",
        update_url="/api/users/update",
        fetch_url="/api/users/getById",
    )
    success_target = "StudentList"
    with_scd = True

    def transform(self, data: dict[str, Any], is_edit: bool) -> dict[str, Any]:
        payload = dict(data)
        payload.update(
            {
                "type": "STUDENT",
                "status": "active",
                "role": _role_reference(data.get("role")),
                "dob": data.get("dob"),
                # the backend still reads the misspelled key
                "bateOfBirth": data.get("dob"),
                "rollNo": _to_int(data.get("rollNo")),
                "classId": _to_int(data.get("classId")),
                "divisionId": _to_int(data.get("divisionId")),
                "schoolId": _to_int(data.get("schoolId")),
            }
        )
        if is_edit and not data.get("password"):
            payload.pop("password", None)
        return payload


__all__ = ["DEFAULT_STUDENT_ROLE", "StudentForm"]
