"""Tests for Web API payload and metadata conversion."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from dataverse_migration.client.exceptions import MetadataError
from dataverse_migration.client.odata import (
    FORMATTED_VALUE,
    LOOKUP_LOGICAL_NAME,
    metadata_from_definition,
    record_from_payload,
    record_to_payload,
    referenced_entities,
)
from dataverse_migration.migration.models import (
    AttributeMetadata,
    EntityReference,
    OptionSetValue,
    Record,
)

CONTACT_DEFINITION = {
    "LogicalName": "contact",
    "SchemaName": "Contact",
    "EntitySetName": "contacts",
    "PrimaryIdAttribute": "contactid",
    "PrimaryNameAttribute": "fullname",
    "IsIntersect": False,
    "DisplayName": {"UserLocalizedLabel": {"Label": "Contact", "LanguageCode": 1033}},
    "Attributes": [
        {"LogicalName": "contactid", "AttributeType": "Uniqueidentifier", "IsPrimaryId": True,
         "IsValidForCreate": True, "IsValidForUpdate": False},
        {"LogicalName": "fullname", "AttributeType": "String",
         "IsValidForCreate": False, "IsValidForUpdate": False},
        {"LogicalName": "lastname", "AttributeType": "String",
         "IsValidForCreate": True, "IsValidForUpdate": True},
        {"LogicalName": "parentcustomerid", "AttributeType": "Customer",
         "IsValidForCreate": True, "IsValidForUpdate": True},
        {"LogicalName": "statecode", "AttributeType": "State",
         "IsValidForCreate": False, "IsValidForUpdate": True},
    ],
    "ManyToOneRelationships": [
        {"ReferencingAttribute": "parentcustomerid", "ReferencedEntity": "account",
         "ReferencingEntityNavigationPropertyName": "parentcustomerid_account"},
        {"ReferencingAttribute": "parentcustomerid", "ReferencedEntity": "contact",
         "ReferencingEntityNavigationPropertyName": "parentcustomerid_contact"},
        {"ReferencingAttribute": "createdby", "ReferencedEntity": "systemuser",
         "ReferencingEntityNavigationPropertyName": "createdby"},
    ],
    "ManyToManyRelationships": [
        {"SchemaName": "new_contact_tag", "IntersectEntityName": "new_contact_tag",
         "Entity1LogicalName": "contact", "Entity1IntersectAttribute": "contactid",
         "Entity1NavigationPropertyName": "new_contact_tag_set",
         "Entity2LogicalName": "new_tag", "Entity2IntersectAttribute": "new_tagid"},
    ],
}


class TestMetadataFromDefinition:
    def test_parses_entity_properties(self):
        entity = metadata_from_definition(CONTACT_DEFINITION)

        assert entity.logical_name == "contact"
        assert entity.entity_set_name == "contacts"
        assert entity.display_name == "Contact"
        assert entity.primary_name_attribute == "fullname"
        assert not entity.is_intersect

    def test_lookup_targets_come_from_many_to_one_relationships(self):
        entity = metadata_from_definition(CONTACT_DEFINITION)

        parent = entity.get_attribute("parentcustomerid")
        assert parent.is_lookup
        assert parent.navigation_properties == {
            "account": "parentcustomerid_account",
            "contact": "parentcustomerid_contact",
        }
        assert entity.get_attribute("createdby") is None

    def test_many_to_many_relationships(self):
        relationship = metadata_from_definition(CONTACT_DEFINITION).many_to_many_relationships[0]

        assert relationship.intersect_entity_name == "new_contact_tag"
        assert relationship.navigation_property == "new_contact_tag_set"

    def test_missing_entity_set_raises(self):
        definition = {k: v for k, v in CONTACT_DEFINITION.items() if k != "EntitySetName"}

        with pytest.raises(MetadataError, match="EntitySetName"):
            metadata_from_definition(definition)

    def test_display_name_falls_back_to_localized_labels(self):
        definition = dict(
            CONTACT_DEFINITION,
            DisplayName={"UserLocalizedLabel": None, "LocalizedLabels": [{"Label": "Kontakt"}]},
        )

        assert metadata_from_definition(definition).display_name == "Kontakt"


class TestRecordFromPayload:
    def test_converts_typed_values(self, contact_metadata):
        contact_id, account_id = uuid4(), uuid4()
        payload = {
            "@odata.etag": 'W/"1234"',
            "contactid": str(contact_id),
            "lastname": "Doe",
            "statecode": 1,
            "statecode" + FORMATTED_VALUE: "Inactive",
            "_parentcustomerid_value": str(account_id),
            "_parentcustomerid_value" + LOOKUP_LOGICAL_NAME: "account",
            "_parentcustomerid_value" + FORMATTED_VALUE: "Contoso",
        }

        record = record_from_payload(payload, contact_metadata)

        assert record.identity == ("contact", contact_id)
        assert record.get("contactid") == contact_id
        assert record.get("statecode") == OptionSetValue(1)
        assert record.get("parentcustomerid") == EntityReference("account", account_id)
        assert record.get("parentcustomerid").name == "Contoso"
        assert not any("@" in name for name in record.attributes)

    def test_single_target_lookup_without_annotation(self, account_metadata):
        account_id, contact_id = uuid4(), uuid4()
        payload = {"accountid": str(account_id), "_primarycontactid_value": str(contact_id)}

        record = record_from_payload(payload, account_metadata)

        assert record.get("primarycontactid") == EntityReference("contact", contact_id)

    def test_ambiguous_lookup_without_annotation_keeps_identifier(self, contact_metadata):
        contact_id, parent_id = uuid4(), uuid4()
        payload = {"contactid": str(contact_id), "_parentcustomerid_value": str(parent_id)}

        record = record_from_payload(payload, contact_metadata)

        assert record.get("parentcustomerid") == parent_id

    def test_empty_lookup_is_none(self, account_metadata):
        record = record_from_payload(
            {"accountid": str(uuid4()), "_primarycontactid_value": None}, account_metadata
        )

        assert "primarycontactid" in record.attributes
        assert record.get("primarycontactid") is None

    def test_missing_primary_id_raises(self, account_metadata):
        with pytest.raises(MetadataError):
            record_from_payload({"name": "Contoso"}, account_metadata)

    def test_referenced_entities(self):
        record = Record(
            "contact",
            uuid4(),
            {
                "parentcustomerid": EntityReference("account", uuid4()),
                "ownerid": EntityReference("systemuser", uuid4()),
                "lastname": "Doe",
            },
        )

        assert referenced_entities(record) == {"account", "systemuser"}


class TestRecordToPayload:
    SETS = {"account": "accounts", "contact": "contacts"}

    def test_lookups_become_binds(self, contact_metadata):
        account_id = uuid4()
        record = Record(
            "contact",
            uuid4(),
            {"parentcustomerid": EntityReference("account", account_id), "lastname": "Doe"},
        )

        payload = record_to_payload(record, contact_metadata, self.SETS)

        assert payload == {
            "parentcustomerid_account@odata.bind": f"/accounts({account_id})",
            "lastname": "Doe",
        }

    def test_primary_id_and_read_only_attributes_are_dropped(self, contact_metadata):
        contact_id = uuid4()
        contact_metadata.attributes["fullname"].is_valid_for_create = False
        record = Record(
            "contact",
            contact_id,
            {"contactid": contact_id, "fullname": "John Doe", "lastname": "Doe", "unknown": 1},
        )

        assert record_to_payload(record, contact_metadata, self.SETS) == {"lastname": "Doe"}

    def test_update_skips_attributes_not_valid_for_update(self, account_metadata):
        account_metadata.attributes["name"].is_valid_for_update = False
        record = Record(
            "account", uuid4(), {"name": "Contoso", "statecode": OptionSetValue(1)}
        )

        payload = record_to_payload(record, account_metadata, self.SETS, for_update=True)

        assert payload == {"statecode": 1}

    def test_empty_lookup_is_left_out(self, account_metadata):
        record = Record("account", uuid4(), {"primarycontactid": None, "name": "Contoso"})

        assert record_to_payload(record, account_metadata, self.SETS) == {"name": "Contoso"}

    def test_intersect_keeps_identifiers(self, contact_tag_metadata):
        link, contact_id, tag_id = uuid4(), uuid4(), uuid4()
        record = Record(
            "new_contact_tag",
            link,
            {"new_contact_tagid": link, "contactid": contact_id, "new_tagid": tag_id},
        )

        payload = record_to_payload(record, contact_tag_metadata, self.SETS)

        assert payload == {
            "new_contact_tagid": str(link),
            "contactid": str(contact_id),
            "new_tagid": str(tag_id),
        }

    def test_plain_values_are_serialized(self, item_metadata):
        item_metadata.attributes["new_amount"] = AttributeMetadata("new_amount", "Money")
        item_metadata.attributes["new_due"] = AttributeMetadata("new_due", "DateTime")
        next_id = uuid4()
        record = Record(
            "new_item",
            uuid4(),
            {"new_amount": Decimal("12.50"), "new_due": date(2024, 3, 1), "new_nextid": next_id},
        )

        payload = record_to_payload(record, item_metadata, self.SETS)

        assert payload == {"new_amount": 12.5, "new_due": "2024-03-01", "new_nextid": str(next_id)}

    def test_unknown_entity_set_raises(self, account_metadata):
        record = Record(
            "account", uuid4(), {"primarycontactid": EntityReference("contact", uuid4())}
        )

        with pytest.raises(MetadataError, match="contact"):
            record_to_payload(record, account_metadata, {})
