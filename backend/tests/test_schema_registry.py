"""Tests for entity schema loading and the schema registry."""

import pytest

from gridkeeper.errors import UnknownEntity
from gridkeeper.metadata.loader import MetadataLoader
from gridkeeper.metadata.registry import EntityKind, SchemaRegistry


def write_entity(tmp_path, filename, body):
    entities = tmp_path / "entities"
    entities.mkdir(exist_ok=True)
    (entities / filename).write_text(body)


class TestMetadataLoader:
    def test_loads_packaged_entities(self):
        loader = MetadataLoader()
        loader.load_all()
        assert set(loader.list_entities()) == {"Category", "Client", "Order", "Site", "Vendor"}

    def test_relations_come_from_foreign_keys(self):
        loader = MetadataLoader()
        loader.load_all()
        site = loader.get_entity("Site")
        vendor_rel = site.get_relation("vendor")
        assert vendor_rel.entity == "Vendor"
        assert vendor_rel.foreign_key == "vendorId"

    def test_many_to_many_join_table(self):
        loader = MetadataLoader()
        loader.load_all()
        categories = loader.get_entity("Site").get_many_to_many("categories")
        assert categories.entity == "Category"
        assert categories.through == "_site_categories"

    def test_get_entity_by_table_is_case_insensitive(self):
        loader = MetadataLoader()
        loader.load_all()
        assert loader.get_entity("SITE").name == "Site"
        assert loader.get_entity("order").name == "Order"
        assert loader.get_entity("nothing") is None

    def test_label_field_defaults_to_name(self):
        loader = MetadataLoader()
        loader.load_all()
        assert loader.get_entity("Vendor").label_field == "name"
        assert loader.get_entity("Site").label_field == "website"

    def test_type_labels(self):
        loader = MetadataLoader()
        loader.load_all()
        site = loader.get_entity("Site")
        assert site.get_field("websiteStatus").type_label == "Enum(WebsiteStatus)"
        assert site.get_field("remark").type_label == "String?"
        assert site.get_field("tags").type_label == "String[]"
        assert site.get_field("costPrice").type_label == "Float"

    def test_identifiers(self):
        loader = MetadataLoader()
        loader.load_all()
        site = loader.get_entity("Site")
        assert site.get_field("id").is_identifier
        assert site.get_field("vendorId").is_identifier
        assert not site.get_field("website").is_identifier

    def test_unknown_relation_target_fails(self, tmp_path):
        write_entity(tmp_path, "thing.yaml", """
entity: Thing
fields:
  - name: id
    type: Int
    primaryKey: true
  - name: ownerId
    type: Int
    relation:
      name: owner
      entity: Missing
""")
        loader = MetadataLoader(tmp_path)
        with pytest.raises(ValueError, match="unknown entity 'Missing'"):
            loader.load_all()

    def test_enum_without_options_fails(self, tmp_path):
        write_entity(tmp_path, "thing.yaml", """
entity: Thing
fields:
  - name: state
    type: Enum
""")
        with pytest.raises(ValueError, match="must declare"):
            MetadataLoader(tmp_path).load_all()

    def test_unknown_type_fails(self, tmp_path):
        write_entity(tmp_path, "thing.yaml", """
entity: Thing
fields:
  - name: blob
    type: Blob
""")
        with pytest.raises(ValueError, match="unknown type 'Blob'"):
            MetadataLoader(tmp_path).load_all()

    def test_duplicate_tables_fail(self, tmp_path):
        write_entity(tmp_path, "a.yaml", "entity: A\ntable: shared\nfields:\n  - name: id\n    type: Int\n")
        write_entity(tmp_path, "b.yaml", "entity: B\ntable: Shared\nfields:\n  - name: id\n    type: Int\n")
        with pytest.raises(ValueError, match="Duplicate table"):
            MetadataLoader(tmp_path).load_all()


class TestReachableTables:
    def test_site_reaches_vendor(self, registry):
        assert registry.reachable_tables("site") == {"site": (), "vendor": ("vendor",)}

    def test_order_reaches_vendor_through_site(self, registry):
        assert registry.reachable_tables("order") == {
            "order": (),
            "client": ("client",),
            "site": ("site",),
            "vendor": ("site", "vendor"),
        }

    def test_leaf_entity_reaches_only_itself(self, registry):
        assert registry.reachable_tables("vendor") == {"vendor": ()}

    def test_unknown_root_raises(self, registry):
        with pytest.raises(UnknownEntity):
            registry.reachable_tables("planet")

    def test_depth_is_limited_to_two(self, tmp_path):
        for name, target in [("A", "B"), ("B", "C"), ("C", "D")]:
            write_entity(tmp_path, f"{name.lower()}.yaml", f"""
entity: {name}
fields:
  - name: id
    type: Int
    primaryKey: true
  - name: nextId
    type: Int
    relation:
      name: {target.lower()}
      entity: {target}
""")
        write_entity(tmp_path, "d.yaml", "entity: D\nfields:\n  - name: id\n    type: Int\n")
        registry = SchemaRegistry.load(tmp_path)
        assert registry.reachable_tables("A") == {"a": (), "b": ("b",), "c": ("b", "c")}


class TestResolvePath:
    def test_root_column(self, registry):
        resolved = registry.resolve_path("site", "website")
        assert resolved.canonical == "website"
        assert resolved.relation_path == ()
        assert resolved.field.type == "String"

    def test_root_table_prefix_is_stripped(self, registry):
        assert registry.canonical("site", "site.website") == "website"
        assert registry.canonical("site", "Site.website") == "website"

    def test_related_column(self, registry):
        resolved = registry.resolve_path("site", "Vendor.name")
        assert resolved.canonical == "vendor.name"
        assert resolved.relation_path == ("vendor",)
        assert resolved.entity.name == "Vendor"

    def test_two_hop_column(self, registry):
        resolved = registry.resolve_path("order", "vendor.name")
        assert resolved.relation_path == ("site", "vendor")

    def test_many_to_many_column(self, registry):
        resolved = registry.resolve_path("site", "categories")
        assert resolved.is_many_to_many
        assert resolved.field is None

    def test_unknown_column(self, registry):
        assert registry.resolve_path("site", "secretColumn") is None

    def test_unreachable_table(self, registry):
        assert registry.resolve_path("site", "client.name") is None
        assert registry.resolve_path("vendor", "site.website") is None

    def test_label_flag(self, registry):
        assert registry.resolve_path("site", "vendor.name").is_label
        assert not registry.resolve_path("site", "remark").is_label


class TestColumns:
    def test_root_columns_come_first_in_declared_order(self, registry):
        paths = registry.column_paths("site")
        assert paths[:3] == ["id", "website", "costPrice"]
        assert paths.index("categories") < paths.index("vendor.id")

    def test_column_types(self, registry):
        columns = registry.columns("site")
        assert columns["websiteStatus"] == "Enum(WebsiteStatus)"
        assert columns["categories"] == "Category[]"
        assert columns["vendor.country"] == "String?"
        assert columns["createdAt"] == "DateTime"

    def test_order_columns_include_two_hop_table(self, registry):
        columns = registry.columns("order")
        assert "site.website" in columns
        assert "vendor.name" in columns
        assert "client.name" in columns

    def test_columns_are_memoized(self, registry):
        assert registry.columns("site") is registry.columns("Site")


class TestEntityKind:
    def test_parse_is_case_insensitive(self):
        assert EntityKind.parse("Site") is EntityKind.SITE
        assert EntityKind.parse("ORDER") is EntityKind.ORDER

    def test_unsupported_resource(self):
        with pytest.raises(UnknownEntity):
            EntityKind.parse("category")
