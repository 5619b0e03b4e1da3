"""Tests that every gridkeeper module imports cleanly."""

import importlib
import pkgutil

import gridkeeper
from gridkeeper.metadata.loader import FieldDefinition


class TestImports:
    def test_all_modules_import(self):
        names = [m.name for m in pkgutil.walk_packages(gridkeeper.__path__, "gridkeeper.")]
        assert "gridkeeper.metadata.loader" in names
        for name in names:
            importlib.import_module(name)

    def test_list_field_with_options(self):
        field_def = FieldDefinition(
            name="tags", type="String", display_name="Tags", list=True, options=["news", "seo"]
        )
        assert field_def.options == ["news", "seo"]
        assert field_def.type_label == "String[]"
