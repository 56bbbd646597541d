import json

from agent_gateway.services.mcp_config import McpConfigLoader


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


def test_missing_file_means_no_servers(tmp_path):
    assert McpConfigLoader(config_path=tmp_path / "absent.json").load("/work") is None


def test_invalid_json_means_no_servers(tmp_path):
    path = tmp_path / "claude.json"
    path.write_text("{broken", encoding="utf-8")
    assert McpConfigLoader(config_path=path).load("/work") is None


def test_project_servers_override_global(tmp_path):
    path = tmp_path / "claude.json"
    _write(path, {
        "mcpServers": {"fs": {"command": "fs-global"}, "web": {"command": "web"}},
        "claudeProjects": {"/work": {"mcpServers": {"fs": {"command": "fs-project"}}}},
    })
    servers = McpConfigLoader(config_path=path).load("/work")
    assert servers == {"fs": {"command": "fs-project"}, "web": {"command": "web"}}


def test_results_are_cached_per_cwd(tmp_path):
    path = tmp_path / "claude.json"
    _write(path, {"mcpServers": {"a": {}}})
    loader = McpConfigLoader(config_path=path, ttl=60)
    assert loader.load("/one") == {"a": {}}

    _write(path, {"mcpServers": {"b": {}}})
    assert loader.load("/one") == {"a": {}}
    assert loader.load("/two") == {"b": {}}

    loader.clear()
    assert loader.load("/one") == {"b": {}}


def test_zero_ttl_rereads(tmp_path):
    path = tmp_path / "claude.json"
    _write(path, {"mcpServers": {"a": {}}})
    loader = McpConfigLoader(config_path=path, ttl=0)
    loader.load("/one")
    _write(path, {"mcpServers": {}})
    assert loader.load("/one") is None
