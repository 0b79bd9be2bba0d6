from workitems.extractors import (
    extract_issue_key,
    extract_issue_web_url,
    extract_page_id,
    extract_page_url,
    extract_search_issues,
    page_exists,
)
from workitems.types import WorkItemContext, WorkItemOptions


def test_extract_issue_from_nested_shapes():
    assert extract_issue_key({"issue": {"key": "DS-1"}}) == "DS-1"
    assert extract_issue_key({"issue_key": "DS-2"}) == "DS-2"
    assert extract_issue_key("DS-3") == ""


def test_extract_issue_web_url_rewrites_rest_self_link():
    payload = {"key": "DS-1", "self": "https://jira.example.com/rest/api/2/issue/10001"}
    assert extract_issue_web_url(payload) == "https://jira.example.com/browse/DS-1"
    assert extract_issue_web_url({"key": "DS-1", "url": "https://jira.example.com/browse/DS-1"}).endswith("/DS-1")
    assert extract_issue_web_url({"self": "https://jira.example.com/rest/api/2/issue/1"}) == ""


def test_extract_search_issues_variants():
    assert extract_search_issues({"issues": [{"key": "A-1"}, "junk"]}) == [{"key": "A-1"}]
    assert extract_search_issues({"nodes": [{"key": "A-2"}]}) == [{"key": "A-2"}]
    assert extract_search_issues([{"key": "A-3"}]) == [{"key": "A-3"}]
    assert extract_search_issues("nothing") == []


def test_extract_page_fields():
    payload = {"page": {"id": "9", "url": "https://wiki.example.com/x"}}
    assert extract_page_id(payload) == "9"
    assert extract_page_url(payload) == "https://wiki.example.com/x"
    assert extract_page_id({"metadata": {"id": "10"}}) == "10"


def test_page_exists_shapes():
    assert page_exists({"id": "1"}) is True
    assert page_exists({"results": [{"id": "1"}]}) is True
    assert page_exists({"size": 1}) is True
    assert page_exists({"results": [], "size": 0}) is False
    assert page_exists(None) is False
    assert page_exists("Page not found") is False


def test_work_item_context_from_payload():
    context = WorkItemContext.from_payload(
        {
            "componentName": " Card ",
            "frameData": [{"id": "1:1"}, "junk"],
            "enhancedFrameData": [{"id": "2:2"}],
            "imagePath": "",
            "fileContext": {"fileKey": "abc"},
            "ticketProjectKey": "WEB",
        }
    )
    assert context.component_name == "Card"
    assert context.frame_data == ({"id": "1:1"},)
    assert context.first_frame == {"id": "2:2"}
    assert context.image_path is None
    assert context.project_key == "WEB"


def test_work_item_context_requires_component_name():
    try:
        WorkItemContext.from_payload({"frameData": []})
    except ValueError as exc:
        assert str(exc) == "component_name_required"
    else:
        assert False, "expected ValueError"


def test_work_item_options_defaults_to_content_only():
    assert WorkItemOptions.from_payload(None).enable_active_creation is False
    options = WorkItemOptions.from_payload({"enableActiveCreation": True, "wikiParentId": "5"})
    assert options.enable_active_creation is True
    assert options.wiki_parent_id == "5"


def test_work_item_options_parses_string_flags_strictly():
    assert WorkItemOptions.from_payload({"enableActiveCreation": "false"}).enable_active_creation is False
    assert WorkItemOptions.from_payload({"enableActiveCreation": " TRUE "}).enable_active_creation is True
    for value in ("yes", 1, 0, [], {}):
        try:
            WorkItemOptions.from_payload({"enableActiveCreation": value})
        except ValueError as exc:
            assert str(exc) == "enable_active_creation_must_be_boolean"
        else:
            assert False, f"expected ValueError for {value!r}"


def test_work_item_context_rejects_non_array_frames():
    for key in ("frameData", "enhancedFrameData"):
        try:
            WorkItemContext.from_payload({"componentName": "X", key: 5})
        except ValueError as exc:
            assert str(exc).endswith("_must_be_array")
        else:
            assert False, f"expected ValueError for {key}"
