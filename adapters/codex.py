"""
Codex MCP transforms.

Codex keeps MCP servers in TOML under [mcp_servers.<name>] with its own
field names. Mapping from the universal MCP server shape:
- headers.Authorization "Bearer ${env:TOKEN}" -> bearer_token_env_var = "TOKEN"
- headers with "${env:VAR}" values -> env_http_headers (header -> VAR)
- other headers -> http_headers
- timeout -> startup_timeout_sec

command, args, env, env_vars, cwd, enabled, enabled_tools and
disabled_tools carry over unchanged. http_headers and env_http_headers are
written as inline tables, the way Codex documents them.
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

import toml
from toml.decoder import InlineTableDict

from core.document_io import InlineTableEncoder
from core.transforms import Transform

logger = logging.getLogger(__name__)

SERVERS_KEY = 'mcp_servers'
PASSTHROUGH_FIELDS = ('command', 'args', 'env', 'env_vars', 'cwd')
TOOL_FIELDS = ('enabled_tools', 'disabled_tools')
INLINE_TABLES = ('http_headers', 'env_http_headers')

_BEARER = re.compile(r'^Bearer\s+\$\{(?:env:)?([A-Z_][A-Z0-9_]*)\}$', re.IGNORECASE)
_ENV_REF = re.compile(r'^\$\{(?:env:)?([A-Z_][A-Z0-9_]*)\}$', re.IGNORECASE)


class InlineTable(dict, InlineTableDict):
    """A dict InlineTableEncoder writes as { key = value, ... }."""


def _copy_fields(source: Dict[str, Any], target: Dict[str, Any], names):
    for name in names:
        if source.get(name):
            target[name] = source[name]


def split_headers(headers: Dict[str, str], extract_bearer: bool = True) -> Tuple[Optional[str], Dict[str, str], Dict[str, str]]:
    """
    Split MCP headers into Codex fields.

    Returns:
        (bearer token env var or None, literal http_headers, env_http_headers)
    """
    bearer = None
    http_headers: Dict[str, str] = {}
    env_headers: Dict[str, str] = {}
    for key, value in headers.items():
        value = str(value)
        if extract_bearer and key.lower() == 'authorization':
            match = _BEARER.match(value)
            if match:
                bearer = match.group(1)
                continue
        match = _ENV_REF.match(value)
        if match:
            env_headers[key] = match.group(1)
        else:
            http_headers[key] = value
    return bearer, http_headers, env_headers


def server_to_codex(server: Dict[str, Any], options: Dict[str, Any]) -> Dict[str, Any]:
    codex: Dict[str, Any] = {}
    _copy_fields(server, codex, PASSTHROUGH_FIELDS)

    if server.get('url'):
        codex['url'] = server['url']
        if server.get('headers'):
            bearer, http_headers, env_headers = split_headers(
                server['headers'], options.get('extractBearerToken', True))
            if bearer:
                codex['bearer_token_env_var'] = bearer
            if http_headers:
                codex['http_headers'] = http_headers
            if env_headers:
                codex['env_http_headers'] = env_headers

    if options.get('convertTimeouts', True) and server.get('timeout') is not None:
        codex['startup_timeout_sec'] = server['timeout']
    if server.get('enabled') is not None:
        codex['enabled'] = server['enabled']
    _copy_fields(server, codex, TOOL_FIELDS)
    return codex


def server_from_codex(codex: Dict[str, Any]) -> Dict[str, Any]:
    server: Dict[str, Any] = {}
    _copy_fields(codex, server, PASSTHROUGH_FIELDS)

    if codex.get('url'):
        server['url'] = codex['url']
        headers: Dict[str, str] = {}
        if codex.get('bearer_token_env_var'):
            headers['Authorization'] = f"Bearer ${{env:{codex['bearer_token_env_var']}}}"
        headers.update(codex.get('http_headers') or {})
        for key, var in (codex.get('env_http_headers') or {}).items():
            headers[key] = f"${{env:{var}}}"
        if headers:
            server['headers'] = headers

    if codex.get('startup_timeout_sec') is not None:
        server['timeout'] = codex['startup_timeout_sec']
    elif codex.get('tool_timeout_sec') is not None:
        server['timeout'] = codex['tool_timeout_sec']
    if codex.get('enabled') is not None:
        server['enabled'] = codex['enabled']
    _copy_fields(codex, server, TOOL_FIELDS)
    return server


def mcp_to_codex(data: Any, options: Optional[Dict[str, Any]] = None) -> Any:
    """
    Convert MCP servers to the Codex schema.

    Accepts either {"mcp_servers": {...}} or a bare server mapping and returns
    the same shape. Non-dict server entries pass through.
    """
    options = options or {}
    wrapped = isinstance(data, dict) and SERVERS_KEY in data
    servers = data[SERVERS_KEY] if wrapped else data
    if not isinstance(servers, dict):
        logger.warning("Invalid MCP configuration structure")
        return data

    result = {}
    for name, config in servers.items():
        result[name] = server_to_codex(config, options) if isinstance(config, dict) else config
    return {SERVERS_KEY: result} if wrapped else result


def codex_to_mcp(data: Any) -> Any:
    """Convert Codex MCP servers back to the universal shape, unwrapped."""
    servers = data
    if isinstance(data, dict) and SERVERS_KEY in data:
        servers = data[SERVERS_KEY]
    if not isinstance(servers, dict):
        logger.warning("Invalid Codex MCP configuration structure")
        return data

    result = {}
    for name, config in servers.items():
        result[name] = server_from_codex(config) if isinstance(config, dict) else config
    return result


def _inline_headers(value: Any, inline: bool) -> Any:
    if not isinstance(value, dict):
        return value
    result = {}
    for key, item in value.items():
        if inline and key in INLINE_TABLES and isinstance(item, dict):
            result[key] = InlineTable(item)
        else:
            result[key] = _inline_headers(item, inline)
    return result


def dump_codex_toml(data: Dict[str, Any], inline_tables: bool = True) -> str:
    """
    Serialize a Codex schema document as TOML.

    Raises:
        ValueError: If the document cannot be represented in TOML
    """
    if not isinstance(data, dict):
        raise ValueError("Codex TOML documents must be tables")
    try:
        return toml.dumps(_inline_headers(data, inline_tables), encoder=InlineTableEncoder())
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize Codex TOML: {e}")


class McpToCodexSchemaTransform(Transform):

    @property
    def name(self) -> str:
        return 'mcp-to-codex-schema'

    @property
    def description(self) -> str:
        return "Convert MCP servers to the Codex schema without serializing"

    def execute(self, document: Any, options: Optional[Dict[str, Any]] = None) -> Any:
        return mcp_to_codex(document, options)


class McpToCodexTomlTransform(Transform):

    @property
    def name(self) -> str:
        return 'mcp-to-codex-toml'

    @property
    def description(self) -> str:
        return "Convert MCP servers to Codex config.toml text"

    def execute(self, document: Any, options: Optional[Dict[str, Any]] = None) -> Any:
        options = options or {}
        converted = mcp_to_codex(document, options)
        return dump_codex_toml(converted, options.get('inlineTables', True))


class CodexTomlToMcpTransform(Transform):

    @property
    def name(self) -> str:
        return 'codex-toml-to-mcp'

    @property
    def description(self) -> str:
        return "Convert Codex config.toml (text or parsed) back to MCP servers"

    def execute(self, document: Any, options: Optional[Dict[str, Any]] = None) -> Any:
        if isinstance(document, str):
            try:
                document = toml.loads(document)
            except toml.TomlDecodeError as e:
                raise ValueError(f"Failed to parse Codex TOML: {e}")
        return codex_to_mcp(document)


def codex_transforms():
    return [McpToCodexSchemaTransform(), McpToCodexTomlTransform(), CodexTomlToMcpTransform()]
