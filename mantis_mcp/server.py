"""
Mantis MCP Server - Exposes the MantisBT API via Model Context Protocol.

This server acts as a bridge between MCP clients and a Mantis bug tracker,
allowing AI assistants to query and update issues, look up users and projects,
and compute issue statistics.

Supports two transport modes:
1. STDIO: For local integration with MCP clients (direct stdin/stdout communication)
2. SSE: For remote deployment via Server-Sent Events over HTTP/HTTPS
"""

# Import FastMCP for building MCP-compliant servers with tool definitions
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

# Import Starlette for ASGI web application (used for SSE transport)
from starlette.applications import Starlette
from starlette.routing import Mount, Route
from starlette.responses import JSONResponse

# Import uvicorn for serving the ASGI app in SSE mode
import uvicorn

# Import standard libraries
import sys
import json
import logging
import argparse
from typing import Annotated, Any, Callable, List, Literal, Optional
from pydantic import Field

from . import __version__
from .compression import compress_payload, to_pretty_json
from .config import load_settings
from .errors import MantisApiError
from .gateway import MantisGateway
from .logging_setup import setup_logging
from .models import IssueFilter, SearchFilter
from .statistics import assignment_statistics, group_statistics

# ============================================================================
# CONFIGURATION & LOGGING
# ============================================================================
# Settings come from environment variables (see config.py). They are read once
# at import time so the server name is known before tools are registered.

settings = load_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)

logger.info(f"MCP Server: {settings.mcp_server_name}")

# Initialize FastMCP server instance with configured service name
# The server exposes tools (functions) and resources (documentation) to clients
mcp = FastMCP(settings.mcp_server_name)

# Created on first use so that importing this module never opens a connection
_gateway: Optional[MantisGateway] = None

# Page size for get_issues / search_issues when the caller does not pass one.
# Smaller than the gateway's own default of 50 to keep tool output short.
TOOL_PAGE_SIZE = 20


def get_gateway() -> MantisGateway:
    """Return the process-wide gateway, creating it from settings on first use."""
    global _gateway
    if _gateway is None:
        _gateway = MantisGateway.from_settings(settings)
    return _gateway


# ============================================================================
# TOOL EXECUTION HELPERS
# ============================================================================

def _validate_id(value: Any, param_name: str) -> int:
    """
    Validate and convert ID parameters to integers.

    Args:
        value: The value to validate (should be int or convertible to int)
        param_name: Name of the parameter (for error messages)

    Returns:
        int: Validated positive integer

    Raises:
        MantisApiError: VALIDATION error if the value is not a positive integer
    """
    try:
        int_value = int(value)
    except (ValueError, TypeError):
        raise MantisApiError.validation(
            f"Invalid {param_name}: expected integer, got {type(value).__name__} ({value})")

    # Ensure the value is positive (IDs are always positive)
    if int_value <= 0:
        raise MantisApiError.validation(f"{param_name} must be a positive integer, got {int_value}")
    return int_value


def _tool_error(payload: dict) -> ToolError:
    return ToolError(to_pretty_json(payload))


def run_tool(tool_name: str, action: Callable[[], Any]) -> str:
    """
    Run one tool body and turn its outcome into the tool response.

    This is the only place errors are converted: any exception raised by the
    action becomes a ToolError carrying a JSON error payload, which FastMCP
    returns to the client as a result flagged isError.

    Args:
        tool_name: Tool name (for logs)
        action: Callable producing the result; strings are returned as-is,
                anything else is rendered as indented JSON

    Returns:
        str: Text content for the tool result

    Raises:
        ToolError: If Mantis is not configured or the action failed
    """
    # Check if Mantis API is configured
    if not settings.is_configured:
        logger.warning(f"{tool_name}: Mantis API is not configured")
        raise _tool_error({
            "error": "Mantis API is not configured",
            "message": "Please set MANTIS_API_URL and MANTIS_API_KEY in environment variables",
        })

    try:
        result = action()
    except MantisApiError as e:
        payload = e.to_dict()
        logger.error(f"{tool_name}: {payload['error']} (kind={e.kind.value}, status_code={e.status_code})")
        raise _tool_error(payload) from e
    except Exception as e:
        # Anything else is a bug or bad input; report it instead of crashing the server
        logger.error(f"{tool_name}: {type(e).__name__}: {e}", exc_info=True)
        raise _tool_error({"error": str(e) or f"Error executing {tool_name}",
                           "error_type": type(e).__name__}) from e

    if isinstance(result, str):
        return result
    return to_pretty_json(result)


# ============================================================================
# ISSUE TOOLS
# ============================================================================

@mcp.tool(
    name="get_issues",
    description="Get Mantis issue list, filterable by multiple criteria. It is recommended to select only id, summary, description fields to avoid excessive data. Large results are returned gzip-compressed and base64-encoded."
)
def get_issues(
    project_id: Annotated[Optional[int], Field(description="Project ID")] = None,
    status_id: Annotated[Optional[int], Field(description="Status ID")] = None,
    handler_id: Annotated[Optional[int], Field(description="Handler ID")] = None,
    reporter_id: Annotated[Optional[int], Field(description="Reporter ID")] = None,
    search: Annotated[Optional[str], Field(description="Search keyword")] = None,
    page_size: Annotated[int, Field(description="Page size (default: 20)")] = TOOL_PAGE_SIZE,
    page: Annotated[int, Field(description="Page number, starting from 1")] = 1,
    select: Annotated[Optional[List[str]], Field(description="Fields to return, e.g.: ['id', 'summary', 'description']")] = None,
    sort: Annotated[Optional[str], Field(description="Field to sort by, e.g.: 'id', 'last_updated', 'created_at'")] = None,
    dir: Annotated[Optional[Literal["ASC", "DESC"]], Field(description="Sort direction: ASC or DESC")] = None,
) -> str:
    """
    List issues, one page at a time.

    Returns:
        str: Compact JSON list of issues, or a compression envelope
             {"compressed": true, "data", "originalSize", "compressedSize"}
             when the list is larger than 100KB
    """
    issue_filter = IssueFilter(
        project_id=project_id,
        status_id=status_id,
        handler_id=handler_id,
        reporter_id=reporter_id,
        search=search,
        select=select or [],
        sort=sort,
        dir=dir,
        page_size=page_size,
        page=page,
    )
    return run_tool("get_issues", lambda: compress_payload(get_gateway().list_issues(issue_filter)))


@mcp.tool(
    name="get_issue_by_id",
    description="Get Mantis issue details by ID"
)
def get_issue_by_id(
    issue_id: Annotated[int, Field(description="Issue ID")],
) -> str:
    return run_tool("get_issue_by_id",
                    lambda: get_gateway().get_issue(_validate_id(issue_id, "issue_id")))


@mcp.tool(
    name="search_issues",
    description="Full-text search over Mantis issues (summary, description, notes) through the SOAP API. Requires ENABLE_SOAP=true."
)
def search_issues(
    search: Annotated[str, Field(description="Text to search for")],
    project_id: Annotated[Optional[int], Field(description="Project ID")] = None,
    status_id: Annotated[Optional[int], Field(description="Status ID")] = None,
    handler_id: Annotated[Optional[int], Field(description="Handler ID")] = None,
    reporter_id: Annotated[Optional[int], Field(description="Reporter ID")] = None,
    page_size: Annotated[int, Field(description="Page size (default: 20)")] = TOOL_PAGE_SIZE,
    page: Annotated[int, Field(description="Page number, starting from 1")] = 1,
    sort: Annotated[Optional[str], Field(description="Field to sort by")] = None,
    sort_direction: Annotated[Optional[Literal["ASC", "DESC"]], Field(description="Sort direction: ASC or DESC")] = None,
) -> str:
    """Search issues by text. Results use the same shape as get_issue_by_id."""
    def action():
        if not settings.enable_soap:
            raise MantisApiError.validation("SOAP search is disabled, set ENABLE_SOAP=true to enable it")
        return get_gateway().search_issues(SearchFilter(
            search=search,
            project_id=project_id,
            status_id=status_id,
            handler_id=handler_id,
            reporter_id=reporter_id,
            sort=sort,
            sort_direction=sort_direction,
            page_size=page_size,
            page=page,
        ))

    return run_tool("search_issues", action)


@mcp.tool(
    name="create_issue",
    description="Create a new Mantis issue"
)
def create_issue(
    summary: Annotated[str, Field(description="Issue summary")],
    description: Annotated[str, Field(description="Issue detailed description")],
    project_id: Annotated[int, Field(description="Project ID")],
    category_id: Annotated[Optional[int], Field(description="Category ID (default: 1)")] = None,
    handler_id: Annotated[Optional[int], Field(description="Handler ID")] = None,
    priority: Annotated[Optional[str], Field(description="Priority name, e.g. 'high'")] = None,
    severity: Annotated[Optional[str], Field(description="Severity name, e.g. 'major'")] = None,
    additional_information: Annotated[Optional[str], Field(description="Additional information")] = None,
) -> str:
    # Build payload with required fields
    issue_data = {
        "summary": summary,
        "description": description,
        "project": {"id": project_id},
        "category": {"id": category_id or 1},  # Default category
    }

    # Optional fields - only included when provided
    optional = {
        "handler": {"id": handler_id} if handler_id else None,
        "priority": {"name": priority} if priority else None,
        "severity": {"name": severity} if severity else None,
        "additional_information": additional_information,
    }
    issue_data.update({k: v for k, v in optional.items() if v})

    return run_tool("create_issue", lambda: get_gateway().create_issue(issue_data))


@mcp.tool(
    name="update_issue",
    description="Update a Mantis issue (partial updates supported). Returns the issue as stored on the server after the update."
)
def update_issue(
    issue_id: Annotated[int, Field(description="Issue ID")],
    summary: Annotated[Optional[str], Field(description="Issue summary")] = None,
    description: Annotated[Optional[str], Field(description="Issue detailed description")] = None,
    handler_id: Annotated[Optional[int], Field(description="Handler ID")] = None,
    status: Annotated[Optional[str], Field(description="Status name")] = None,
    resolution: Annotated[Optional[str], Field(description="Resolution name")] = None,
    priority: Annotated[Optional[str], Field(description="Priority name")] = None,
    severity: Annotated[Optional[str], Field(description="Severity name")] = None,
) -> str:
    update_data = {
        "summary": summary,
        "description": description,
        "handler": {"id": handler_id} if handler_id else None,
        "status": {"name": status} if status else None,
        "resolution": {"name": resolution} if resolution else None,
        "priority": {"name": priority} if priority else None,
        "severity": {"name": severity} if severity else None,
    }
    return run_tool("update_issue",
                    lambda: get_gateway().update_issue(_validate_id(issue_id, "issue_id"), update_data))


@mcp.tool(
    name="change_issue_status",
    description="Change a Mantis issue status with an optional note. Useful for closing, resolving, or transitioning issues while documenting the reason"
)
def change_issue_status(
    issue_id: Annotated[int, Field(description="Issue ID")],
    status: Annotated[str, Field(description="Target status name (e.g.: 'closed', 'resolved', 'acknowledged', 'confirmed', 'assigned')")],
    resolution: Annotated[Optional[str], Field(description="Resolution name (e.g.: 'fixed', 'unable to reproduce', 'not fixable', 'duplicate', 'no change required', 'suspended', 'won't fix')")] = None,
    note: Annotated[Optional[str], Field(description="Note explaining the status change")] = None,
) -> str:
    return run_tool("change_issue_status", lambda: get_gateway().change_status(
        _validate_id(issue_id, "issue_id"), status, resolution, note))


@mcp.tool(
    name="add_issue_note",
    description="Add a note to a Mantis issue"
)
def add_issue_note(
    issue_id: Annotated[int, Field(description="Issue ID")],
    text: Annotated[str, Field(description="Note content")],
    view_state: Annotated[Literal["public", "private"], Field(description="Visibility state (public or private)")] = "public",
) -> str:
    note_data = {
        "text": text,
        "view_state": {"name": view_state},
    }
    return run_tool("add_issue_note",
                    lambda: get_gateway().add_note(_validate_id(issue_id, "issue_id"), note_data))


# ============================================================================
# USER & PROJECT TOOLS
# ============================================================================

@mcp.tool(
    name="get_user",
    description="Get Mantis user by username"
)
def get_user(
    username: Annotated[str, Field(description="Username")],
) -> str:
    return run_tool("get_user", lambda: get_gateway().get_user_by_username(username))


@mcp.tool(
    name="get_current_user",
    description="Get the Mantis user the API key belongs to"
)
def get_current_user() -> str:
    return run_tool("get_current_user", lambda: get_gateway().get_current_user())


@mcp.tool(
    name="get_users",
    description="Brute-force fetch all users by probing user IDs 1, 2, 3, ... until 10 consecutive IDs are not found. Slow on large installations."
)
def get_users() -> str:
    return run_tool("get_users", lambda: get_gateway().enumerate_users())


@mcp.tool(
    name="get_projects",
    description="Get Mantis project list"
)
def get_projects() -> str:
    return run_tool("get_projects", lambda: get_gateway().list_projects())


@mcp.tool(
    name="get_users_by_project_id",
    description="Get all users for a specific project"
)
def get_users_by_project_id(
    project_id: Annotated[int, Field(description="Project ID")],
) -> str:
    return run_tool("get_users_by_project_id",
                    lambda: get_gateway().list_project_users(_validate_id(project_id, "project_id")))


# ============================================================================
# STATISTICS TOOLS
# ============================================================================
# Both tools fetch up to 1000 issues and aggregate them locally.

@mcp.tool(
    name="get_issue_statistics",
    description="Get Mantis issue statistics, analyzed by different dimensions"
)
def get_issue_statistics(
    group_by: Annotated[Literal["status", "priority", "severity", "handler", "reporter"], Field(description="Group by")],
    project_id: Annotated[Optional[int], Field(description="Project ID")] = None,
    period: Annotated[Literal["all", "today", "week", "month"], Field(description="Time range: all, today, week (this week), month (this month)")] = "all",
) -> str:
    return run_tool("get_issue_statistics", lambda: group_statistics(
        get_gateway(), group_by, period=period, project_id=project_id))


@mcp.tool(
    name="get_assignment_statistics",
    description="Get Mantis issue assignment statistics, analyze issue distribution across users"
)
def get_assignment_statistics(
    project_id: Annotated[Optional[int], Field(description="Project ID")] = None,
    include_unassigned: Annotated[bool, Field(description="Whether to include unassigned issues")] = True,
    status_filter: Annotated[Optional[List[int]], Field(description="Status filter, only count issues with specific status IDs")] = None,
) -> str:
    return run_tool("get_assignment_statistics", lambda: assignment_statistics(
        get_gateway(), project_id=project_id, include_unassigned=include_unassigned,
        status_filter=status_filter))


# ============================================================================
# MCP RESOURCES
# ============================================================================
# Static documentation for MCP clients, accessible via the mantis:// URI scheme.

@mcp.resource("mantis://config/settings")
def get_server_config() -> str:
    """Server configuration (the API key is never included)"""
    return json.dumps({
        "api_base_url": settings.mantis_api_url,
        "version": __version__,
        "api_configured": settings.is_configured,
        "cache_enabled": settings.cache_enabled,
        "cache_ttl_seconds": settings.cache_ttl_seconds,
        "soap_search_enabled": settings.enable_soap,
    }, indent=2)


@mcp.resource("mantis://docs/api-endpoints")
def get_api_endpoints() -> str:
    """Mantis endpoints used by this server"""
    return json.dumps({
        "issues": ["GET /issues", "GET /issues/{id}", "POST /issues", "PATCH /issues/{id}",
                   "POST /issues/{id}/notes"],
        "users": ["GET /users/me", "GET /users/{id}", "GET /users/username/{name}"],
        "projects": ["GET /projects", "GET /projects/{id}/users"],
        "soap": ["POST /api/soap/mantisconnect.php (mc_filter_search_issues)"],
    }, indent=2)


# ============================================================================
# SSE TRANSPORT
# ============================================================================

async def health_check(request):
    """
    Health check endpoint for monitoring server status.

    Used by load balancers, monitoring tools, and manual testing.
    """
    return JSONResponse({
        "status": "ok",
        "service": settings.mcp_server_name,
        "version": __version__,
        "api_base": settings.mantis_api_url,
        "api_configured": settings.is_configured,
        "endpoints": {
            "health": "/health",
            "sse": "/sse"
        }
    })


def create_app() -> Starlette:
    """
    Starlette ASGI application for SSE transport.

    Routes:
    1. Health check at /health
    2. FastMCP's SSE app mounted at / (serves /sse and /messages)
    """
    sse_app = mcp.http_app(transport="sse")
    return Starlette(
        routes=[
            Route("/health", health_check),
            Mount("/", app=sse_app),
        ],
        lifespan=sse_app.lifespan,
    )


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def main():
    """
    Run the MCP server with either STDIO or SSE transport.

    Transport Modes:
    1. STDIO (default): MCP client spawns this as a subprocess
    2. SSE: Runs as a web service with uvicorn
    """
    parser = argparse.ArgumentParser(description='Mantis MCP Server')

    # Transport mode selection: stdio or sse
    parser.add_argument('--transport', choices=['stdio', 'sse'], default='stdio',
                        help='Transport type: stdio (local dev) or sse (production)')

    # SSE-specific arguments (ignored in stdio mode)
    parser.add_argument('--host', default='0.0.0.0',
                        help='Host to bind to for SSE (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=8000,
                        help='Port to bind to for SSE (default: 8000)')

    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("Mantis MCP Server Starting")
    logger.info(f"API Base URL: {settings.mantis_api_url}")
    logger.info(f"API Configured: {settings.is_configured}")
    logger.info(f"Cache: enabled={settings.cache_enabled}, ttl={settings.cache_ttl_seconds}s")
    logger.info(f"SOAP search: {'enabled' if settings.enable_soap else 'disabled'}")
    logger.info(f"Transport Mode: {args.transport}")
    logger.info("=" * 60)

    if not settings.is_configured:
        logger.warning("Mantis API is not fully configured, some features may not be available")

    # Print startup information to stderr (stdout is reserved for STDIO communication)
    print(f"Mantis MCP Server | API: {settings.mantis_api_url} | Transport: {args.transport}", file=sys.stderr)

    if args.transport == 'sse':
        logger.info(f"Starting SSE server on {args.host}:{args.port}")
        try:
            uvicorn.run(create_app(), host=args.host, port=args.port, log_level="info")
        except Exception as e:
            logger.critical(f"Failed to start SSE server: {e}", exc_info=True)
            sys.exit(1)
    else:
        # FastMCP handles the MCP protocol over stdin/stdout; blocks until the
        # client closes the connection
        logger.info("Starting STDIO server (stdin/stdout communication)")
        try:
            mcp.run(transport='stdio')
        except KeyboardInterrupt:
            logger.info("Server stopped by user (Ctrl+C)")
        except Exception as e:
            logger.critical(f"Failed to start STDIO server: {e}", exc_info=True)
            sys.exit(1)


if __name__ == "__main__":
    main()
