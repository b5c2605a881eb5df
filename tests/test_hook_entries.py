"""Tests for building, classifying, stripping and merging hook entries."""

from __future__ import annotations

import copy

from clubhouse.hooks.entries import (
    build_hook_command,
    is_clubhouse_hook_entry,
    merge_hook_entries,
    strip_clubhouse_hooks,
)

HOOK_URL = "http://127.0.0.1:4567/hook"
USER_GROUP = {"matcher": "Bash", "hooks": [{"type": "command", "command": "./lint.sh"}]}


def _machine_group() -> dict:
    return {"hooks": [{"type": "command", "command": build_hook_command(HOOK_URL)}]}


class TestBuildHookCommand:
    def test_posts_to_agent_url_with_nonce(self) -> None:
        cmd = build_hook_command(HOOK_URL)
        assert cmd.startswith("cat | curl -s -X POST http://127.0.0.1:4567/hook/${CLUBHOUSE_AGENT_ID} ")
        assert '-H "X-Clubhouse-Nonce: ${CLUBHOUSE_HOOK_NONCE}"' in cmd
        assert "--data-binary @-" in cmd
        assert cmd.endswith("|| true")

    def test_event_hint_appended(self) -> None:
        cmd = build_hook_command(HOOK_URL, event_hint="preToolUse")
        assert "/hook/${CLUBHOUSE_AGENT_ID}/preToolUse " in cmd


class TestIsClubhouseHookEntry:
    def test_grouped_entry(self) -> None:
        assert is_clubhouse_hook_entry(_machine_group())

    def test_flat_bash_entry(self) -> None:
        entry = {"type": "command", "bash": build_hook_command(HOOK_URL, "sessionEnd")}
        assert is_clubhouse_hook_entry(entry)

    def test_user_entries_not_classified(self) -> None:
        assert not is_clubhouse_hook_entry(USER_GROUP)
        assert not is_clubhouse_hook_entry({"type": "command", "bash": "echo hi"})
        assert not is_clubhouse_hook_entry(
            {"type": "command", "command": "curl https://example.com/hook/x"}
        )
        assert not is_clubhouse_hook_entry("not a dict")

    def test_localhost_variants(self) -> None:
        for host in ("localhost", "[::1]"):
            entry = {"type": "command", "bash": f"curl http://{host}:9000/hook/a1"}
            assert is_clubhouse_hook_entry(entry)

    def test_agent_url_marker_on_any_host(self) -> None:
        entry = {"hooks": [{"type": "command", "command": build_hook_command("http://0.0.0.0:4567/hook")}]}
        assert is_clubhouse_hook_entry(entry)


class TestStripClubhouseHooks:
    def test_removes_only_machine_entries(self) -> None:
        settings = {
            "permissions": {"allow": ["Read"]},
            "hooks": {"PreToolUse": [USER_GROUP, _machine_group()], "Stop": [_machine_group()]},
        }
        stripped = strip_clubhouse_hooks(settings)
        assert stripped == {
            "permissions": {"allow": ["Read"]},
            "hooks": {"PreToolUse": [USER_GROUP]},
        }

    def test_strips_entries_for_non_loopback_host(self) -> None:
        from clubhouse.orchestrators.claude_code import build_claude_hooks

        settings = merge_hook_entries(
            {"hooks": {"PreToolUse": [USER_GROUP]}}, build_claude_hooks("http://0.0.0.0:4567/hook")
        )
        assert strip_clubhouse_hooks(settings) == {"hooks": {"PreToolUse": [USER_GROUP]}}

    def test_drops_empty_hooks_key(self) -> None:
        settings = {"hooks": {"Stop": [_machine_group()]}}
        assert strip_clubhouse_hooks(settings) == {}

    def test_does_not_mutate_input(self) -> None:
        settings = {"hooks": {"Stop": [USER_GROUP, _machine_group()]}}
        before = copy.deepcopy(settings)
        strip_clubhouse_hooks(settings)
        assert settings == before

    def test_mixed_group_keeps_user_handlers(self) -> None:
        user_handler = {"type": "command", "command": "./notify.sh"}
        group = {
            "matcher": "",
            "hooks": [user_handler, {"type": "command", "command": build_hook_command(HOOK_URL)}],
        }
        stripped = strip_clubhouse_hooks({"hooks": {"Notification": [group]}})
        assert stripped == {"hooks": {"Notification": [{"matcher": "", "hooks": [user_handler]}]}}

    def test_without_hooks_key(self) -> None:
        assert strip_clubhouse_hooks({"model": "opus"}) == {"model": "opus"}


class TestMergeHookEntries:
    def test_appends_after_user_entries(self) -> None:
        settings = {"hooks": {"PreToolUse": [USER_GROUP]}}
        merged = merge_hook_entries(settings, {"PreToolUse": [_machine_group()]})
        assert merged["hooks"]["PreToolUse"] == [USER_GROUP, _machine_group()]

    def test_replaces_previous_machine_entries(self) -> None:
        first = merge_hook_entries({}, {"Stop": [_machine_group()]})
        second = merge_hook_entries(first, {"Stop": [_machine_group()]})
        assert second["hooks"]["Stop"] == [_machine_group()]

    def test_preserves_other_keys(self) -> None:
        settings = {"permissions": {"allow": ["Bash(git:*)"]}}
        merged = merge_hook_entries(settings, {"Stop": [_machine_group()]})
        assert merged["permissions"] == {"allow": ["Bash(git:*)"]}

    def test_round_trip_restores_user_content(self) -> None:
        settings = {"permissions": {"deny": []}, "hooks": {"PreToolUse": [USER_GROUP]}}
        merged = merge_hook_entries(settings, {"PreToolUse": [_machine_group()]})
        assert strip_clubhouse_hooks(merged) == settings
