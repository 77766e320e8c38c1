"""Teacher add/edit form."""

from __future__ import annotations

from scm_forms.ui.forms.engine import FormEndpoints

from . import register_preset
from .base import FormPreset


@register_preset("teacher")
class TeacherForm(FormPreset):
    entity_name = "Teacher"
    fields = (
        {"name": "firstName", "label": "First Name", "type": "text", "required": True},
        {"name": "lastName", "label": "Last Name", "type": "text", "required": True},
        {"name": "email", "label": "Email", "type": "email", "required": True},
        {"name": "subject", "label": "Subject", "type": "text", "required": True},
        {"name": "phone", "label": "Phone", "type": "tel", "required": False},
    )
    endpoints = FormEndpoints(
        save_url="/api/teachers/save",
        update_url="/api/teachers/update",
        fetch_url="/api/teachers/getById",
    )
    success_target = "TeacherList"


__all__ = ["TeacherForm"]
