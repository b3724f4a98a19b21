"""Tests for the Dataverse Web API client against a mocked transport."""

import asyncio
import json
from uuid import uuid4

import httpx
import pytest

from dataverse_migration.client.base_client import BaseAPIClient, parse_error_code
from dataverse_migration.client.dataverse_client import (
    DUPLICATE_RECORD_ERROR_CODE,
    DataverseClient,
)
from dataverse_migration.client.exceptions import (
    AuthenticationError,
    ConflictError,
    DuplicateAssociationError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from dataverse_migration.config import DataverseInstanceConfig
from dataverse_migration.migration.models import EntityReference, Record

ORG = "https://contoso.crm.dynamics.com"
API = f"{ORG}/api/data/v9.2"


def make_client(handler) -> DataverseClient:
    config = DataverseInstanceConfig(url=ORG, token="secret-token")
    return DataverseClient(config, rate_limit=100, transport=httpx.MockTransport(handler))


def call(handler, operation):
    """Run ``operation(client)`` against a fresh client and close it afterwards."""

    async def runner():
        client = make_client(handler)
        try:
            return await operation(client)
        finally:
            await client.close()

    return asyncio.run(runner())


class Recorder:
    """Transport handler that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


class TestParseErrorCode:
    @pytest.mark.parametrize(
        "code, expected",
        [
            ("0x80040237", -2147220937),
            ("-2147220937", -2147220937),
            (-2147220937, -2147220937),
            ("0x0", 0),
            (None, None),
            ("", None),
            ("not-a-code", None),
        ],
    )
    def test_parse(self, code, expected):
        assert parse_error_code(code) == expected


class TestBaseClient:
    def test_odata_headers_and_urls(self):
        async def check():
            client = BaseAPIClient(API, token="secret-token")
            try:
                assert client.client.headers["Authorization"] == "Bearer secret-token"
                assert client.client.headers["OData-Version"] == "4.0"
                assert client._build_url("accounts") == f"{API}/accounts"
                assert client._build_url("/WhoAmI") == f"{API}/WhoAmI"
                next_link = f"{API}/accounts?$skiptoken=abc"
                assert client._build_url(next_link) == next_link
            finally:
                await client.close()

        asyncio.run(check())

    def test_rate_limit_response_carries_retry_after(self):
        client = BaseAPIClient.__new__(BaseAPIClient)
        response = httpx.Response(
            429,
            headers={"Retry-After": "7"},
            json={"error": {"code": "0x80072322", "message": "Number of requests exceeded"}},
        )

        with pytest.raises(RateLimitError) as excinfo:
            client._handle_error_response(response)

        assert excinfo.value.retry_after == 7
        assert excinfo.value.error_code == parse_error_code("0x80072322")

    def test_server_error_mapping(self):
        client = BaseAPIClient.__new__(BaseAPIClient)

        with pytest.raises(ServerError, match="Generic SQL error"):
            client._handle_error_response(
                httpx.Response(500, json={"error": {"message": "Generic SQL error"}})
            )

    def test_conflict_mapping_keeps_fault_code(self):
        client = BaseAPIClient.__new__(BaseAPIClient)

        with pytest.raises(ConflictError) as excinfo:
            client._handle_error_response(
                httpx.Response(409, json={"error": {"code": "0x80040237", "message": "Dup"}})
            )

        assert excinfo.value.error_code == DUPLICATE_RECORD_ERROR_CODE

    def test_non_json_error_body(self):
        client = BaseAPIClient.__new__(BaseAPIClient)

        with pytest.raises(NotFoundError, match="Resource not found"):
            client._handle_error_response(httpx.Response(404, text="Resource not found"))


class TestRecordOperations:
    def test_upsert_created(self, account_metadata):
        account_id, contact_id = uuid4(), uuid4()
        recorder = Recorder(httpx.Response(201, json={"accountid": str(account_id)}))
        record = Record(
            "account",
            account_id,
            {
                "accountid": account_id,
                "name": "Contoso",
                "primarycontactid": EntityReference("contact", contact_id),
            },
        )

        async def operation(client):
            client._entity_set_names["contact"] = "contacts"
            return await client.upsert(record, account_metadata)

        created = call(recorder, operation)

        assert created is True
        request = recorder.requests[0]
        assert request.method == "PATCH"
        assert str(request.url) == f"{API}/accounts({account_id})"
        assert request.headers["Prefer"] == "return=representation"
        assert recorder.body() == {
            "name": "Contoso",
            "primarycontactid@odata.bind": f"/contacts({contact_id})",
        }

    def test_upsert_existing(self, account_metadata):
        recorder = Recorder(httpx.Response(200, json={}))
        record = Record("account", uuid4(), {"name": "Contoso"})

        assert call(recorder, lambda client: client.upsert(record, account_metadata)) is False

    def test_upsert_fetches_unknown_entity_set_once(self, contact_metadata):
        account_id = uuid4()
        recorder = Recorder(
            httpx.Response(200, json={"LogicalName": "account", "EntitySetName": "accounts"}),
            httpx.Response(204),
        )
        record = Record(
            "contact", uuid4(), {"parentcustomerid": EntityReference("account", account_id)}
        )

        call(recorder, lambda client: client.upsert(record, contact_metadata))

        assert recorder.requests[0].url.path.endswith("EntityDefinitions(LogicalName='account')")
        assert recorder.body() == {
            "parentcustomerid_account@odata.bind": f"/accounts({account_id})"
        }

    def test_update_requires_existing_record(self, account_metadata):
        recorder = Recorder(httpx.Response(204))
        record = Record("account", uuid4(), {"name": "Contoso"})

        call(recorder, lambda client: client.update(record, account_metadata))

        assert recorder.requests[0].headers["If-Match"] == "*"

    def test_authentication_failure_is_not_retried(self, account_metadata):
        recorder = Recorder(httpx.Response(401, json={"error": {"message": "expired"}}))
        record = Record("account", uuid4(), {"name": "Contoso"})

        with pytest.raises(AuthenticationError):
            call(recorder, lambda client: client.upsert(record, account_metadata))

        assert len(recorder.requests) == 1


class TestAssociate:
    def _associate(self, recorder, contact_id, tag_id):
        async def operation(client):
            client._entity_set_names.update(contact="contacts", new_tag="new_tags")
            await client.associate("contact", contact_id, "new_contact_tag", "new_tag", tag_id)

        call(recorder, operation)

    def test_posts_reference(self):
        contact_id, tag_id = uuid4(), uuid4()
        recorder = Recorder(httpx.Response(204))

        self._associate(recorder, contact_id, tag_id)

        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{API}/contacts({contact_id})/new_contact_tag/$ref"
        assert recorder.body() == {"@odata.id": f"{API}/new_tags({tag_id})"}

    def test_duplicate_fault_is_reported(self):
        recorder = Recorder(
            httpx.Response(
                400,
                json={"error": {"code": "0x80040237", "message": "Cannot insert duplicate key."}},
            )
        )

        with pytest.raises(DuplicateAssociationError) as excinfo:
            self._associate(recorder, uuid4(), uuid4())

        assert excinfo.value.error_code == DUPLICATE_RECORD_ERROR_CODE
        assert len(recorder.requests) == 1

    def test_other_faults_propagate(self):
        recorder = Recorder(
            httpx.Response(404, json={"error": {"code": "0x80040217", "message": "Not found"}})
        )

        with pytest.raises(NotFoundError):
            self._associate(recorder, uuid4(), uuid4())


class TestQueries:
    def test_retrieve_multiple_follows_next_link(self):
        first, second = {"accountid": str(uuid4())}, {"accountid": str(uuid4())}
        next_link = f"{API}/accounts?$skiptoken=page2"
        recorder = Recorder(
            httpx.Response(200, json={"value": [first], "@odata.nextLink": next_link}),
            httpx.Response(200, json={"value": [second]}),
        )

        results = call(
            recorder,
            lambda client: client.retrieve_multiple(
                "accounts", params={"$filter": "statecode eq 0"}, page_size=1
            ),
        )

        assert results == [first, second]
        assert recorder.requests[0].url.params["$filter"] == "statecode eq 0"
        assert "odata.maxpagesize=1" in recorder.requests[0].headers["Prefer"]
        assert str(recorder.requests[1].url) == next_link

    def test_retrieve_entity_metadata(self):
        definition = {
            "LogicalName": "new_tag",
            "SchemaName": "new_Tag",
            "EntitySetName": "new_tags",
            "PrimaryIdAttribute": "new_tagid",
            "PrimaryNameAttribute": "new_name",
            "Attributes": [{"LogicalName": "new_tagid", "AttributeType": "Uniqueidentifier"}],
        }
        recorder = Recorder(httpx.Response(200, json=definition))

        async def operation(client):
            metadata = await client.retrieve_entity_metadata("new_tag")
            return metadata, await client.get_entity_set_name("new_tag")

        metadata, entity_set = call(recorder, operation)

        assert metadata.entity_set_name == "new_tags"
        assert entity_set == "new_tags"
        assert len(recorder.requests) == 1
        assert "$expand" in recorder.requests[0].url.params

    def test_validate_connectivity(self):
        who = {"UserId": str(uuid4()), "OrganizationId": str(uuid4())}
        recorder = Recorder(httpx.Response(200, json=who))

        assert call(recorder, lambda client: client.validate_connectivity()) == who
        assert recorder.requests[0].url.path == "/api/data/v9.2/WhoAmI"
