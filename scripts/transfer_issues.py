# /// script
# dependencies = [
#     "environs",
#     "httpx",
#     "loguru",
#     "click",
# ]
# ///
"""Transfer issues between GitHub repositories based on their project board status.

Requires GITHUB_TOKEN environment variable to be set.
Must be a token with repo and project scopes.

To dry run:

    uv run scripts/transfer_issues.py my/source_repo my/target_repo --project-id PVT_xxx --status Ready --dry

To transfer:

    uv run scripts/transfer_issues.py my/source_repo my/target_repo --project-id PVT_xxx --status Ready

To transfer specific issues, bypassing the project board:

    uv run scripts/transfer_issues.py my/source_repo my/target_repo --issue 728 --issue 731
"""
from __future__ import annotations

import re
import sys
import httpx
import click
import asyncio
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Literal, Protocol
from environs import Env, EnvError
from loguru import logger

GRAPHQL_URL = 'https://api.github.com/graphql'
PAGE_SIZE = 100
DEFAULT_LABEL = 'transferred'
DEFAULT_LABEL_COLOR = 'b60205'
LABEL_DESCRIPTION = 'Indicates the issue was transferred'
SINGLE_SELECT_VALUE = 'ProjectV2ItemFieldSingleSelectValue'


class GraphQLError(httpx.HTTPError):
    def __init__(self, errors: Any):
        self.errors = errors
        super().__init__(f"GraphQL error: {errors}")


class ConfigurationError(Exception):
    """Unrecoverable error: the run cannot continue."""


class ProjectNotFoundError(ConfigurationError):
    pass


class RepositoryNotFoundError(ConfigurationError):
    pass


@dataclass(frozen=True)
class RepoRef:
    owner: str
    name: str

    @classmethod
    def parse(cls, value: str) -> RepoRef:
        parts = value.strip().split('/')
        if len(parts) != 2:
            raise ValueError(f"Invalid repository '{value}'. Expected format: 'owner/name'")
        owner, name = parts
        if not owner or not name:
            raise ValueError(f"Invalid repository '{value}'. Both owner and name must be non-empty")
        return cls(owner=owner, name=name)

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}"


def normalize_color(value: str) -> str:
    color = value.strip().lstrip('#')
    if not re.fullmatch(r'[0-9a-fA-F]{6}', color):
        raise ValueError(f"Invalid label color '{value}'. Expected six hex digits, e.g. 'b60205'")
    return color.lower()


@dataclass(frozen=True)
class Settings:
    token: str
    log_level: int
    graphql_url: str
    label_name: str
    label_color: str


def load_settings() -> Settings:
    env = Env(eager=False)
    env.read_env()
    token = env.str("GITHUB_TOKEN")  # requires repo and project scopes
    log_level = env.log_level("LOG_LEVEL", "INFO")
    graphql_url = env.str("GITHUB_GRAPHQL_URL", GRAPHQL_URL)
    label_name = env.str("TRANSFER_LABEL", DEFAULT_LABEL)
    label_color = env.str("TRANSFER_LABEL_COLOR", DEFAULT_LABEL_COLOR)
    env.seal()
    return Settings(
        token=token,
        log_level=log_level,
        graphql_url=graphql_url,
        label_name=label_name,
        label_color=label_color,
    )


@dataclass(frozen=True)
class Config:
    source_repo: RepoRef
    target_repo: RepoRef
    label_name: str
    label_color: str
    project_id: str | None = None
    status_filter: str = ''
    dry_run: bool = False
    issue_numbers: tuple[int, ...] = ()


def setup_logging(level: int | str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, format="<level>{level}</level> {message}", level=level, colorize=True)


def print_config(config: Config) -> None:
    logger.info("Configuration:")
    logger.info(f"  Source Repository: {config.source_repo}")
    logger.info(f"  Target Repository: {config.target_repo}")
    logger.info(f"  Label to Add: {config.label_name} (#{config.label_color})")
    if config.issue_numbers:
        logger.info(f"  Issue Numbers: {list(config.issue_numbers)}")
    else:
        logger.info(f"  Project ID: {config.project_id}")
        logger.info(f"  Status to Filter: {config.status_filter!r}")
        if not config.status_filter:
            logger.warning("Status filter is empty, every issue on the project board will be transferred")
    logger.info(f"  Dry Run Mode: {'Enabled' if config.dry_run else 'Disabled'}")


class GraphQLExecutor(Protocol):
    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]: ...


class GraphQLClient:
    def __init__(
        self,
        *,
        token: str,
        url: str = GRAPHQL_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.headers = {
            'Authorization': f'Bearer {token}',
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': '2022-11-28',
        }
        self.client = httpx.AsyncClient(
            headers=self.headers,
            timeout=30.0,
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self.client.post(
            self.url,
            json={'query': query, 'variables': variables or {}}
        )
        response.raise_for_status()
        try:
            result = response.json()
        except ValueError as e:
            raise GraphQLError(f"Response is not JSON: {response.text[:200]!r}") from e
        if not isinstance(result, dict):
            raise GraphQLError(f"Unexpected response: {result!r}")
        if 'errors' in result:
            raise GraphQLError(result['errors'])
        if not isinstance(result.get('data'), dict):
            raise GraphQLError(f"Response has no data: {result}")
        return result['data']


@dataclass(frozen=True)
class ProjectItem:
    issue_number: int | None
    repository: str | None
    statuses: tuple[str, ...]

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> ProjectItem:
        content = node.get('content') or {}
        repository = (content.get('repository') or {}).get('nameWithOwner')
        field_values = (node.get('fieldValues') or {}).get('nodes') or []
        statuses = tuple(
            value['name'] for value in field_values
            if value and value.get('__typename') == SINGLE_SELECT_VALUE and value.get('name') is not None
        )
        return cls(
            issue_number=content.get('number'),
            repository=repository,
            statuses=statuses,
        )

    @property
    def is_issue(self) -> bool:
        return self.issue_number is not None

    def matches_status(self, status_filter: str) -> bool:
        # Any single-select field counts, not only the one named "Status".
        if not status_filter:
            return True
        return status_filter in self.statuses


@dataclass(frozen=True)
class TransferredIssue:
    id: str
    number: int
    title: str
    url: str

    @classmethod
    def from_node(cls, node: dict[str, Any] | None) -> TransferredIssue:
        try:
            return cls(id=node['id'], number=node['number'], title=node['title'], url=node['url'])
        except (KeyError, TypeError) as e:
            raise GraphQLError(f"transferIssue returned an incomplete issue: {node}") from e


@dataclass(frozen=True)
class LabelOutcome:
    labelable_id: str
    status: Literal['added', 'simulated', 'failed']
    label_id: str | None = None
    created: bool = False
    error: str | None = None


@dataclass(frozen=True)
class TransferOutcome:
    issue_number: int
    status: Literal['transferred', 'simulated', 'skipped', 'failed']
    issue: TransferredIssue | None = None
    label: LabelOutcome | None = None
    error: str | None = None


class IssueTransferer:
    def __init__(self, config: Config, client: GraphQLExecutor):
        self.config = config
        self.client = client
        self._label_id: str | None = None

    async def get_repository_id(self, repo: RepoRef) -> str:
        query = """
        query RepositoryId($owner: String!, $name: String!) {
          repository(owner: $owner, name: $name) {
            id
          }
        }
        """
        logger.debug(f"Resolving node ID of repository {repo}")
        try:
            data = await self.client.execute(query, {'owner': repo.owner, 'name': repo.name})
        except httpx.HTTPError as e:
            raise RepositoryNotFoundError(f"Could not resolve repository {repo}: {e}") from e
        repository = data.get('repository')
        if not repository:
            raise RepositoryNotFoundError(f"Repository {repo} does not exist or is not accessible")
        return repository['id']

    async def get_issue_id(self, repo: RepoRef, issue_number: int) -> str | None:
        """Return the node ID of an issue, or None if it cannot be resolved."""
        query = """
        query IssueId($owner: String!, $name: String!, $issueNumber: Int!) {
          repository(owner: $owner, name: $name) {
            issue(number: $issueNumber) {
              id
            }
          }
        }
        """
        variables = {
            'owner': repo.owner,
            'name': repo.name,
            'issueNumber': issue_number
        }
        logger.debug(f"Resolving node ID of issue #{issue_number} in {repo}")
        try:
            data = await self.client.execute(query, variables)
        except httpx.HTTPError as e:
            logger.debug(f"Lookup of issue #{issue_number} failed: {e}")
            return None
        issue = (data.get('repository') or {}).get('issue')
        return issue.get('id') if issue else None

    async def iter_project_items(self, project_id: str) -> AsyncIterator[ProjectItem]:
        """Yield every item of a ProjectV2 board, following the page cursor.

        Raises ProjectNotFoundError if the node is missing, is not a project,
        or the query is rejected.
        """
        query = """
        query ProjectItems($projectId: ID!, $first: Int!, $after: String) {
          node(id: $projectId) {
            ... on ProjectV2 {
              items(first: $first, after: $after) {
                nodes {
                  content {
                    ... on Issue {
                      number
                      repository {
                        nameWithOwner
                      }
                    }
                  }
                  fieldValues(first: 100) {
                    nodes {
                      __typename
                      ... on ProjectV2ItemFieldSingleSelectValue {
                        name
                      }
                    }
                  }
                }
                pageInfo {
                  endCursor
                  hasNextPage
                }
              }
            }
          }
        }
        """
        variables: dict[str, Any] = {
            'projectId': project_id,
            'first': PAGE_SIZE,
            'after': None
        }
        while True:
            logger.debug(f"Fetching items of project {project_id} after cursor {variables['after']}")
            try:
                data = await self.client.execute(query, variables)
            except httpx.HTTPError as e:
                raise ProjectNotFoundError(f"Could not query project {project_id}: {e}") from e
            node = data.get('node')
            if not node or not node.get('items'):
                raise ProjectNotFoundError(f"No items found in project {project_id}")
            items = node['items']
            for item in items['nodes']:
                yield ProjectItem.from_node(item or {})
            if not items['pageInfo']['hasNextPage']:
                break
            variables['after'] = items['pageInfo']['endCursor']

    async def fetch_issues_to_transfer(self) -> list[int]:
        if not self.config.project_id:
            raise ProjectNotFoundError("No project ID configured")
        source = str(self.config.source_repo).lower()
        issues = []
        async for item in self.iter_project_items(self.config.project_id):
            if not item.is_issue:
                continue
            if item.repository is not None and item.repository.lower() != source:
                logger.debug(f"Ignoring issue #{item.issue_number} from {item.repository}")
                continue
            if item.matches_status(self.config.status_filter):
                issues.append(item.issue_number)
        return issues

    async def transfer_issue(self, *, issue_id: str, issue_number: int, target_repo_id: str) -> TransferOutcome:
        if self.config.dry_run:
            return TransferOutcome(issue_number=issue_number, status='simulated')
        query = """
        mutation TransferIssue($issueId: ID!, $targetRepoId: ID!) {
          transferIssue(input: {
            issueId: $issueId,
            repositoryId: $targetRepoId
          }) {
            issue {
              id
              number
              title
              url
            }
          }
        }
        """
        variables = {
            'issueId': issue_id,
            'targetRepoId': target_repo_id
        }
        logger.debug(f"Transferring issue #{issue_number} to repository ID '{target_repo_id}'")
        try:
            data = await self.client.execute(query, variables)
            transferred = TransferredIssue.from_node((data.get('transferIssue') or {}).get('issue'))
        except httpx.HTTPError as e:
            return TransferOutcome(issue_number=issue_number, status='failed', error=str(e))
        return TransferOutcome(issue_number=issue_number, status='transferred', issue=transferred)

    async def get_label_id(self, repo: RepoRef, label_name: str) -> str | None:
        query = """
        query LabelId($owner: String!, $name: String!, $labelName: String!) {
          repository(owner: $owner, name: $name) {
            label(name: $labelName) {
              id
            }
          }
        }
        """
        variables = {
            'owner': repo.owner,
            'name': repo.name,
            'labelName': label_name
        }
        logger.debug(f"Fetching label ID for '{label_name}' in {repo}")
        data = await self.client.execute(query, variables)
        label = (data.get('repository') or {}).get('label')
        return label['id'] if label else None

    async def create_label(self, *, repository_id: str, name: str, color: str) -> str:
        query = """
        mutation CreateLabel($repositoryId: ID!, $name: String!, $color: String!, $description: String) {
          createLabel(input: {
            repositoryId: $repositoryId,
            name: $name,
            color: $color,
            description: $description
          }) {
            label {
              id
            }
          }
        }
        """
        variables = {
            'repositoryId': repository_id,
            'name': name,
            'color': color,
            'description': LABEL_DESCRIPTION
        }
        logger.debug(f"Creating label '{name}' in repository ID '{repository_id}'")
        data = await self.client.execute(query, variables)
        label = (data.get('createLabel') or {}).get('label')
        if not label or not label.get('id'):
            raise GraphQLError(f"createLabel returned no label: {data}")
        return label['id']

    async def get_or_create_label_id(self, repository_id: str) -> tuple[str, bool]:
        """Return the configured label's ID and whether this call created it."""
        if self._label_id is not None:
            return self._label_id, False
        created = False
        label_id = await self.get_label_id(self.config.target_repo, self.config.label_name)
        if label_id is None:
            label_id = await self.create_label(
                repository_id=repository_id,
                name=self.config.label_name,
                color=self.config.label_color,
            )
            created = True
        self._label_id = label_id
        return label_id, created

    async def add_label(self, labelable_id: str, *, repository_id: str) -> LabelOutcome:
        # run() never gets here in dry-run mode: nothing was transferred, so there is nothing to label.
        if self.config.dry_run:
            return LabelOutcome(labelable_id=labelable_id, status='simulated')
        query = """
        mutation AddLabels($labelableId: ID!, $labelIds: [ID!]!) {
          addLabelsToLabelable(input: {
            labelableId: $labelableId,
            labelIds: $labelIds
          }) {
            clientMutationId
          }
        }
        """
        try:
            label_id, created = await self.get_or_create_label_id(repository_id)
            logger.debug(f"Adding label ID '{label_id}' to '{labelable_id}'")
            await self.client.execute(query, {'labelableId': labelable_id, 'labelIds': [label_id]})
        except httpx.HTTPError as e:
            return LabelOutcome(labelable_id=labelable_id, status='failed', error=str(e))
        return LabelOutcome(labelable_id=labelable_id, status='added', label_id=label_id, created=created)

    def _log_label(self, outcome: LabelOutcome) -> None:
        label = self.config.label_name
        if outcome.status == 'simulated':
            logger.info(f"[DRY] Would add label \"{label}\" to issue with ID: {outcome.labelable_id}")
        elif outcome.status == 'failed':
            logger.error(f"Error adding label to issue with ID {outcome.labelable_id}: {outcome.error}")
        else:
            if outcome.created:
                logger.info(f"Label \"{label}\" created.")
            logger.success(f"Label \"{label}\" added to issue with ID: {outcome.labelable_id}.")

    async def process_issue(self, issue_number: int, target_repo_id: str) -> TransferOutcome:
        source = self.config.source_repo
        issue_id = await self.get_issue_id(source, issue_number)
        if issue_id is None:
            logger.warning(f"Issue #{issue_number} does not exist in {source}. Skipping transfer.")
            return TransferOutcome(issue_number=issue_number, status='skipped')

        outcome = await self.transfer_issue(
            issue_id=issue_id,
            issue_number=issue_number,
            target_repo_id=target_repo_id,
        )
        if outcome.status == 'simulated':
            logger.info(f"[DRY] Would transfer issue #{issue_number} to repository with ID: {target_repo_id}")
            return outcome
        if outcome.status == 'failed':
            logger.error(f"Error transferring issue #{issue_number}: {outcome.error}")
            return outcome

        issue = outcome.issue
        logger.success(f"Issue #{issue.number} {issue.title} transferred successfully: {issue.url}")
        # The issue gets a new node ID in the target repository.
        label = await self.add_label(issue.id, repository_id=target_repo_id)
        self._log_label(label)
        return replace(outcome, label=label)

    async def run(self) -> list[TransferOutcome]:
        target_repo_id = await self.get_repository_id(self.config.target_repo)
        if self.config.issue_numbers:
            issues = list(self.config.issue_numbers)
        else:
            issues = await self.fetch_issues_to_transfer()
        logger.info(f"Issues to transfer: {issues}")

        outcomes = []
        for issue_number in issues:
            outcomes.append(await self.process_issue(issue_number, target_repo_id))
        return outcomes


def summarize(outcomes: list[TransferOutcome]) -> dict[str, int]:
    counts = {'transferred': 0, 'simulated': 0, 'skipped': 0, 'failed': 0}
    for outcome in outcomes:
        counts[outcome.status] += 1
    return counts


def _parse_repo(ctx, param, value):
    try:
        return RepoRef.parse(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


@click.command(help="Transfer issues from a project board to another GitHub repository.")
@click.argument("source_repo", callback=_parse_repo)
@click.argument("target_repo", callback=_parse_repo)
@click.option("--project-id", default=None, help="Node ID of the GitHub project (PVT_...). Its issues from repositories other than SOURCE_REPO are ignored")
@click.option("--status", default="", help="Only transfer SOURCE_REPO issues with this status. Empty transfers all of them")
@click.option("--label", default=None, help="Label to add to transferred issues [env: TRANSFER_LABEL]")
@click.option("--label-color", default=None, help="Color of the label if it has to be created [env: TRANSFER_LABEL_COLOR]")
@click.option("--issue", "issues", type=int, multiple=True, help="Transfer this issue number, bypassing the project board")
@click.option("--dry", is_flag=True, help="Enable dry run mode")
def main(source_repo, target_repo, project_id, status, label, label_color, issues, dry):
    if not project_id and not issues:
        raise click.UsageError("Either --project-id or --issue is required")
    try:
        settings = load_settings()
    except EnvError as e:
        raise click.ClickException(str(e)) from e
    try:
        color = normalize_color(label_color or settings.label_color)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="'--label-color'") from e
    setup_logging(settings.log_level)

    config = Config(
        source_repo=source_repo,
        target_repo=target_repo,
        label_name=label or settings.label_name,
        label_color=color,
        project_id=project_id,
        status_filter=status,
        dry_run=dry,
        issue_numbers=tuple(issues),
    )
    print_config(config)

    async def run_transfer():
        async with GraphQLClient(token=settings.token, url=settings.graphql_url) as client:
            return await IssueTransferer(config, client).run()

    try:
        outcomes = asyncio.run(run_transfer())
    except ConfigurationError as e:
        logger.error(str(e))
        raise click.ClickException(str(e)) from e
    counts = summarize(outcomes)
    logger.success(
        f"{'[DRY] ' if dry else ''}{counts['transferred']} issues transferred, "
        f"{counts['simulated']} simulated, {counts['skipped']} skipped, {counts['failed']} failed"
    )

if __name__ == "__main__":
    main()
