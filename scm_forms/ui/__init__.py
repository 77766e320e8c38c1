"""Form engine, model layer and presets of the school-management front-end."""
