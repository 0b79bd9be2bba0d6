from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    mcp_jira_url: str | None = None
    mcp_jira_key: str | None = None
    mcp_confluence_url: str | None = None
    mcp_wiki_key: str | None = None
    mcp_server_url: str = "http://localhost:3000/api/mcp"
    mcp_server_key: str | None = None
    mcp_timeout_sec: float = 30.0

    jira_base_url: str | None = None
    jira_username: str | None = None
    jira_api_token: str | None = None
    confluence_base_url: str | None = None
    confluence_username: str | None = None
    confluence_api_token: str | None = None

    jira_project_key: str = "DS"
    jira_issue_type: str = "Task"
    confluence_space_key: str = "DCUX"
    confluence_parent_id: str | None = None
    git_repo_path: str | None = None

    wiki_title_probe_limit: int = 5
    wiki_create_retry_limit: int = 5
    wiki_conflict_markers: str = "exist,conflict,unique,500,internal server error"
    image_download_timeout_sec: float = 20.0

    supabase_url: str | None = None
    supabase_service_role_key: str | None = None
    work_item_links_table: str = "work_item_links"

    tool_specs_validate_on_startup: bool = True
    frontend_url: str = "http://localhost:3000"
    allowed_origins: str = "http://localhost:3000"

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
