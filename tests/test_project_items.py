"""Tests for reading candidate issues from a project board."""

from dataclasses import replace

import httpx
import pytest

from fakes import FakeGraphQL, draft_item, graphql_transport, issue_item, project_page
from transfer_issues import (
    PAGE_SIZE,
    Config,
    ConfigurationError,
    GraphQLClient,
    GraphQLError,
    IssueTransferer,
    ProjectItem,
    ProjectNotFoundError,
)


@pytest.mark.unit
class TestFetchIssuesToTransfer:
    """Tests for fetch_issues_to_transfer."""

    @pytest.mark.asyncio
    async def test_filters_on_status(self, config: Config) -> None:
        """Only issues whose status equals the filter are returned, in board order."""
        fake = FakeGraphQL(
            {
                "ProjectItems": project_page(
                    [issue_item(1, "Ready"), issue_item(2, "Done"), issue_item(3, "Ready")]
                )
            }
        )

        issues = await IssueTransferer(config, fake).fetch_issues_to_transfer()

        assert issues == [1, 3]

    @pytest.mark.asyncio
    async def test_follows_cursor_until_last_page(self, config: Config) -> None:
        """Every page is requested and contributes its matching items."""
        fake = FakeGraphQL(
            {
                "ProjectItems": [
                    project_page([issue_item(1, "Ready"), issue_item(2, "Done")], has_next=True, cursor="c1"),
                    project_page([issue_item(3, "Ready")], has_next=True, cursor="c2"),
                    project_page([issue_item(4, "Todo"), issue_item(5, "Ready")], cursor="c3"),
                ]
            }
        )

        issues = await IssueTransferer(config, fake).fetch_issues_to_transfer()

        assert issues == [1, 3, 5]
        cursors = [variables["after"] for _, variables in fake.calls]
        assert cursors == [None, "c1", "c2"]
        assert all(variables["first"] == PAGE_SIZE for _, variables in fake.calls)
        assert all(variables["projectId"] == "PVT_123" for _, variables in fake.calls)

    @pytest.mark.asyncio
    async def test_empty_page_with_next_page_keeps_going(self, config: Config) -> None:
        """An empty page does not end pagination while the server reports more."""
        fake = FakeGraphQL(
            {
                "ProjectItems": [
                    project_page([], has_next=True, cursor="c1"),
                    project_page([issue_item(7, "Ready")]),
                ]
            }
        )

        issues = await IssueTransferer(config, fake).fetch_issues_to_transfer()

        assert issues == [7]
        assert len(fake.calls) == 2

    @pytest.mark.asyncio
    async def test_ignores_items_without_issue(self, config: Config) -> None:
        """Draft issues and pull requests carry no issue number and are skipped."""
        fake = FakeGraphQL(
            {"ProjectItems": project_page([draft_item("Ready"), issue_item(9, "Ready"), {"content": None}])}
        )

        issues = await IssueTransferer(config, fake).fetch_issues_to_transfer()

        assert issues == [9]

    @pytest.mark.asyncio
    async def test_ignores_items_without_status(self, config: Config) -> None:
        fake = FakeGraphQL({"ProjectItems": project_page([issue_item(1), issue_item(2, "Ready")])})

        issues = await IssueTransferer(config, fake).fetch_issues_to_transfer()

        assert issues == [2]

    @pytest.mark.asyncio
    async def test_empty_filter_selects_every_issue(self, config: Config) -> None:
        """An empty status filter disables status filtering."""
        fake = FakeGraphQL(
            {"ProjectItems": project_page([issue_item(1), issue_item(2, "Done"), draft_item("Done")])}
        )

        issues = await IssueTransferer(replace(config, status_filter=""), fake).fetch_issues_to_transfer()

        assert issues == [1, 2]

    @pytest.mark.asyncio
    async def test_ignores_issues_from_other_repositories(self, config: Config) -> None:
        """Project boards can span repositories; only source repository issues qualify."""
        fake = FakeGraphQL(
            {
                "ProjectItems": project_page(
                    [
                        issue_item(1, "Ready", repository="other/repo"),
                        issue_item(2, "Ready", repository="My/Source_Repo"),
                        issue_item(3, "Ready"),
                    ]
                )
            }
        )

        issues = await IssueTransferer(config, fake).fetch_issues_to_transfer()

        assert issues == [2, 3]


@pytest.mark.unit
class TestProjectErrors:
    """A missing or inaccessible project aborts the run."""

    @pytest.mark.asyncio
    async def test_missing_node(self, config: Config) -> None:
        fake = FakeGraphQL({"ProjectItems": {"node": None}})

        with pytest.raises(ProjectNotFoundError, match="No items found in project PVT_123"):
            await IssueTransferer(config, fake).fetch_issues_to_transfer()

    @pytest.mark.asyncio
    async def test_node_is_not_a_project(self, config: Config) -> None:
        """Non-project nodes come back without the items collection."""
        fake = FakeGraphQL({"ProjectItems": {"node": {}}})

        with pytest.raises(ProjectNotFoundError):
            await IssueTransferer(config, fake).fetch_issues_to_transfer()

    @pytest.mark.asyncio
    async def test_query_rejected(self, config: Config) -> None:
        fake = FakeGraphQL(
            {"ProjectItems": GraphQLError([{"message": "Could not resolve to a node with the global id"}])}
        )

        with pytest.raises(ProjectNotFoundError, match="Could not query project PVT_123"):
            await IssueTransferer(config, fake).fetch_issues_to_transfer()

    @pytest.mark.asyncio
    async def test_failure_on_later_page(self, config: Config) -> None:
        fake = FakeGraphQL(
            {"ProjectItems": [project_page([issue_item(1, "Ready")], has_next=True, cursor="c1"), {"node": None}]}
        )

        with pytest.raises(ProjectNotFoundError):
            await IssueTransferer(config, fake).fetch_issues_to_transfer()

    @pytest.mark.asyncio
    async def test_server_error_on_later_page(self, config: Config) -> None:
        """HTTP failures while paging are reported as a project error, not a raw httpx error."""
        pages = iter(
            [
                httpx.Response(200, json={"data": project_page([issue_item(1, "Ready")], has_next=True, cursor="c1")}),
                httpx.Response(502, text="Bad Gateway"),
            ]
        )
        transport = graphql_transport(
            {"RepositoryId": {"repository": {"id": "R_target"}}, "ProjectItems": lambda variables: next(pages)}
        )

        async with GraphQLClient(token="t", transport=transport) as client:
            with pytest.raises(ConfigurationError, match="Could not query project PVT_123"):
                await IssueTransferer(config, client).run()

    @pytest.mark.asyncio
    async def test_non_json_page(self, config: Config) -> None:
        transport = graphql_transport({"ProjectItems": lambda variables: httpx.Response(200, text="<html>")})

        async with GraphQLClient(token="t", transport=transport) as client:
            with pytest.raises(ProjectNotFoundError):
                await IssueTransferer(config, client).fetch_issues_to_transfer()

    @pytest.mark.asyncio
    async def test_no_project_configured(self, config: Config) -> None:
        fake = FakeGraphQL()

        with pytest.raises(ProjectNotFoundError, match="No project ID configured"):
            await IssueTransferer(replace(config, project_id=None), fake).fetch_issues_to_transfer()
        assert fake.calls == []


@pytest.mark.unit
class TestProjectItem:
    """Tests for ProjectItem parsing and matching."""

    def test_from_node_reads_only_single_select_values(self) -> None:
        item = ProjectItem.from_node(
            {
                "content": {"number": 4, "repository": {"nameWithOwner": "my/source_repo"}},
                "fieldValues": {
                    "nodes": [
                        {"__typename": "ProjectV2ItemFieldTextValue"},
                        {"__typename": "ProjectV2ItemFieldSingleSelectValue", "name": "Ready"},
                        {},
                    ]
                },
            }
        )

        assert item.issue_number == 4
        assert item.repository == "my/source_repo"
        assert item.statuses == ("Ready",)
        assert item.is_issue

    def test_from_node_without_content(self) -> None:
        item = ProjectItem.from_node({"content": None, "fieldValues": {"nodes": []}})

        assert not item.is_issue
        assert item.repository is None

    def test_any_single_select_field_matches(self) -> None:
        """Known limitation: a second single-select field can satisfy the filter."""
        item = ProjectItem(issue_number=1, repository=None, statuses=("Done", "Ready"))

        assert item.matches_status("Ready")
        assert item.matches_status("Done")
        assert not item.matches_status("Todo")
        assert item.matches_status("")
