import asyncio

from workitems.errors import ConflictError, NotFoundError, ToolError, TransportError
from workitems.idempotency import IdempotencyResolver, build_open_issue_jql, parse_conflict_markers


class _FakeResources:
    def __init__(self, *, taken_titles=(), create_errors=(), issue=None, search_error=None):
        self.taken_titles = set(taken_titles)
        self.create_errors = list(create_errors)
        self.issue = issue
        self.search_error = search_error
        self.probed: list[str] = []
        self.created_titles: list[str] = []
        self.jql: list[str] = []

    async def get_page(self, title, space_key=None):
        self.probed.append(title)
        return {"id": "existing"} if title in self.taken_titles else None

    async def create_page(self, title, content, *, space_key=None, parent_id=None):
        self.created_titles.append(title)
        if self.create_errors:
            error = self.create_errors.pop(0)
            if error is not None:
                raise error
        return {"id": f"page-{len(self.created_titles)}"}

    async def find_first_issue(self, jql):
        self.jql.append(jql)
        if self.search_error is not None:
            raise self.search_error
        if self.issue is None:
            raise NotFoundError("no_matching_issue", tool_name="jira_search")
        return self.issue


def _resolver(resources, **kwargs) -> IdempotencyResolver:
    kwargs.setdefault("clock", lambda: 1700000123.0)
    return IdempotencyResolver(resources, **kwargs)


def test_build_open_issue_jql_strips_quotes():
    jql = build_open_issue_jql("DS", 'Implement "Login" Button')
    assert jql == 'project = "DS" AND summary ~ "\\"Implement Login Button\\"" AND statusCategory != Done'


def test_find_existing_issue_returns_open_match():
    resources = _FakeResources(issue={"key": "DS-7"})
    issue = asyncio.run(_resolver(resources).find_existing_issue("DS", "Implement LoginButton"))
    assert issue == {"key": "DS-7"}
    assert 'project = "DS"' in resources.jql[0]


def test_find_existing_issue_none_when_missing_or_search_fails():
    assert asyncio.run(_resolver(_FakeResources()).find_existing_issue("DS", "Implement X")) is None
    failing = _FakeResources(search_error=TransportError("timed out", tool_name="jira_search"))
    assert asyncio.run(_resolver(failing).find_existing_issue("DS", "Implement X")) is None


def test_predict_page_title_uses_first_free_suffix():
    resources = _FakeResources(taken_titles={"Plan", "Plan (1)"})
    title = asyncio.run(_resolver(resources).predict_page_title("Plan", "DCUX"))
    assert title == "Plan (2)"
    assert resources.probed == ["Plan", "Plan (1)", "Plan (2)"]


def test_predict_page_title_falls_back_to_timestamp_after_probe_limit():
    taken = {"Plan"} | {f"Plan ({i})" for i in range(1, 5)}
    resources = _FakeResources(taken_titles=taken)
    title = asyncio.run(_resolver(resources, probe_limit=5).predict_page_title("Plan", "DCUX"))
    assert title == "Plan (1700000123000)"
    assert len(resources.probed) == 5


def test_create_page_with_retry_uses_fresh_suffix_on_conflict():
    resources = _FakeResources(create_errors=[ToolError("A page with this title already exists")])
    title, result = asyncio.run(_resolver(resources).create_page_with_retry("Plan", "# body", first_title="Plan (1)"))
    assert title == "Plan (3000)"
    assert result == {"id": "page-2"}
    assert resources.created_titles == ["Plan (1)", "Plan (3000)"]


def test_create_page_with_retry_never_repeats_a_title():
    errors = [ToolError("title conflict") for _ in range(5)]
    resources = _FakeResources(create_errors=errors)
    try:
        asyncio.run(_resolver(resources, create_retry_limit=5).create_page_with_retry("Plan", "# body"))
    except ConflictError as exc:
        assert "after 5 attempts" in exc.reason
    else:
        assert False, "expected ConflictError"
    assert len(resources.created_titles) == 5
    assert len(set(resources.created_titles)) == 5


def test_create_page_with_retry_retries_server_errors():
    resources = _FakeResources(create_errors=[TransportError("Internal Server Error", status_code=500)])
    title, _ = asyncio.run(_resolver(resources).create_page_with_retry("Plan", "# body"))
    assert resources.created_titles == ["Plan", title]


def test_create_page_with_retry_propagates_other_errors():
    resources = _FakeResources(create_errors=[ToolError("permission denied")])
    try:
        asyncio.run(_resolver(resources).create_page_with_retry("Plan", "# body"))
    except ToolError as exc:
        assert exc.reason == "permission denied"
    else:
        assert False, "expected ToolError"
    assert resources.created_titles == ["Plan"]


def test_conflict_markers_can_be_overridden():
    resolver = _resolver(_FakeResources(), conflict_markers=parse_conflict_markers("duplicate, taken"))
    assert resolver.is_conflict(ToolError("duplicate title")) is True
    assert resolver.is_conflict(ToolError("already exists")) is False
    assert resolver.is_conflict(ConflictError("anything")) is True
    assert parse_conflict_markers("") == parse_conflict_markers(None)


def test_create_unique_page_starts_from_predicted_title():
    resources = _FakeResources(taken_titles={"Plan"})
    title, _ = asyncio.run(_resolver(resources).create_unique_page("Plan", "# body", space_key="DCUX"))
    assert title == "Plan (1)"
    assert resources.created_titles == ["Plan (1)"]
