"""Unit tests for healthnav.agent.nodes — processing node functions."""

from __future__ import annotations

import threading
import time
from contextlib import ExitStack
from unittest.mock import MagicMock, patch

import pytest

from conftest import PATIENT_ID, USER_ID, make_chunk

from healthnav.agent.nodes import (
    _get_memory_store,
    call_model,
    persist_turn,
    prettify,
    route_model_output,
    save_context,
    tools,
)
from healthnav.rag.facts import ChatMode
from healthnav.rag.plans import RETRIEVAL_PLANS, PlanId
from healthnav.status import (
    ACTION,
    ANSWER_READY,
    GENERATING_RESPONSE,
    SUGGESTIONS_PENDING,
    SUGGESTIONS_READY,
)

QUESTION = {"role": "user", "content": "What is my latest LDL?"}
ANSWER = {"role": "assistant", "content": "Your LDL is 160 mg/dL [lab.pdf, 2025-04-14]."}
TOOL_CALL = {
    "role": "assistant",
    "content": "",
    "tool_calls": [
        {"function": {"name": "clinical_trials_search", "arguments": {}}},
        {"function": {"name": "web_search", "arguments": {"question": "ignored"}}},
    ],
}


@pytest.fixture
def memory_store() -> MagicMock:
    store = MagicMock()
    store.recall.return_value = ["<start> earlier exchange <end>"]
    return store


@pytest.fixture
def pipeline(memory_store):
    """Patch every collaborator call_model uses; yields the mocks by name."""
    mocks = {
        "detect_intent": MagicMock(return_value=RETRIEVAL_PLANS[PlanId.FACTUAL]),
        "retrieve_chunks": MagicMock(
            return_value=[make_chunk(f"c{i}", f"d{i % 2}") for i in range(6)]
        ),
        "extract_structured_facts": MagicMock(return_value=[]),
        "curate_context": MagicMock(return_value="CURATED"),
        "chat": MagicMock(return_value=ANSWER),
        "_get_memory_store": MagicMock(return_value=memory_store),
    }
    with ExitStack() as stack:
        for name, mock in mocks.items():
            stack.enter_context(patch(f"healthnav.agent.nodes.{name}", mock))
        yield mocks


# ------------------------------------------------------------------
# call_model
# ------------------------------------------------------------------


class TestCallModel:
    def test_appends_response_and_keeps_curated_context(self, turn_config, run_cfg, memory_store, pipeline):
        result = call_model({"messages": [QUESTION]}, run_cfg)

        assert result["messages"] == [QUESTION, ANSWER]
        assert result["curated_context"] == "CURATED"
        assert result["memory_store"] is memory_store

    def test_pipeline_order_and_scoping(self, turn_config, run_cfg, memory_store, pipeline):
        call_model({"messages": [QUESTION]}, run_cfg)

        memory_store.recall.assert_called_once_with(QUESTION["content"], PATIENT_ID)
        plan = pipeline["detect_intent"].return_value
        pipeline["retrieve_chunks"].assert_called_once_with(QUESTION["content"], PATIENT_ID, plan)
        selected = pipeline["curate_context"].call_args.args[2]
        assert len(selected) <= plan.evidence_budget

    def test_system_prompt_embeds_curated_context_and_tools(self, turn_config, run_cfg, pipeline):
        call_model({"messages": [QUESTION]}, run_cfg)

        messages = pipeline["chat"].call_args.args[0]
        assert messages[0]["role"] == "system"
        assert "CURATED" in messages[0]["content"]
        assert turn_config["system_time"] in messages[0]["content"]
        assert messages[-1] == QUESTION
        tool_names = {t["function"]["name"] for t in pipeline["chat"].call_args.kwargs["tools"]}
        assert tool_names == {"web_search", "clinical_trials_search"}

    def test_history_precedes_turn_messages(self, turn_config, run_cfg, pipeline):
        turn_config["history"] = [{"role": "user", "content": "Age: 40"}]
        call_model({"messages": [QUESTION]}, run_cfg)
        messages = pipeline["chat"].call_args.args[0]
        assert messages[1:] == [{"role": "user", "content": "Age: 40"}, QUESTION]

    def test_original_question_drives_intent_and_search(self, turn_config, run_cfg, pipeline):
        turn_config["original_question"] = "¿Cuál es mi LDL?"
        call_model({"messages": [QUESTION]}, run_cfg)
        assert pipeline["detect_intent"].call_args.args[0] == "¿Cuál es mi LDL?"
        assert pipeline["retrieve_chunks"].call_args.args[0] == f"{QUESTION['content']} ¿Cuál es mi LDL?"

    def test_second_pass_uses_latest_user_message(self, turn_config, run_cfg, memory_store, pipeline):
        tool_result = {"role": "tool", "content": "tool output", "tool_name": "web_search"}
        call_model({"messages": [QUESTION, TOOL_CALL, tool_result]}, run_cfg)
        memory_store.recall.assert_called_once_with(QUESTION["content"], PATIENT_ID)

    def test_advanced_mode_reaches_extraction(self, turn_config, run_cfg, pipeline):
        turn_config["chat_mode"] = "advanced"
        call_model({"messages": [QUESTION]}, run_cfg)
        assert pipeline["extract_structured_facts"].call_args.args[3] == "advanced"

    def test_unknown_chat_mode_falls_back_to_fast(self, turn_config, run_cfg, pipeline, caplog):
        turn_config["chat_mode"] = "turbo"
        result = call_model({"messages": [QUESTION]}, run_cfg)
        assert pipeline["extract_structured_facts"].call_args.args[3] is ChatMode.FAST
        assert result["messages"][-1] == ANSWER
        assert "Unknown chat mode" in caplog.text

    def test_retrieval_error_aborts_before_generation(self, turn_config, run_cfg, pipeline):
        pipeline["retrieve_chunks"].side_effect = ConnectionError("index down")
        with pytest.raises(ConnectionError):
            call_model({"messages": [QUESTION]}, run_cfg)
        pipeline["extract_structured_facts"].assert_not_called()
        pipeline["curate_context"].assert_not_called()
        pipeline["chat"].assert_not_called()

    def test_curation_error_aborts(self, turn_config, run_cfg, pipeline):
        pipeline["curate_context"].side_effect = RuntimeError("curator down")
        with pytest.raises(RuntimeError):
            call_model({"messages": [QUESTION]}, run_cfg)
        pipeline["chat"].assert_not_called()


# ------------------------------------------------------------------
# route_model_output
# ------------------------------------------------------------------


class TestRouteModelOutput:
    def test_routes_to_tools(self, turn_config, run_cfg, status_channel):
        assert route_model_output({"messages": [QUESTION, TOOL_CALL]}, run_cfg) == "tools"
        assert status_channel.events == []

    def test_routes_to_prettify_with_status(self, turn_config, run_cfg, status_channel):
        assert route_model_output({"messages": [QUESTION, ANSWER]}, run_cfg) == "prettify"
        assert status_channel.statuses == [GENERATING_RESPONSE]
        user_id, event = status_channel.events[0]
        assert user_id == USER_ID
        assert event["patientId"] == PATIENT_ID


# ------------------------------------------------------------------
# tools
# ------------------------------------------------------------------


class TestToolsNode:
    def test_executes_only_first_call(self, turn_config, run_cfg, status_channel):
        result = tools({"messages": [QUESTION, TOOL_CALL]}, run_cfg)
        appended = result["messages"][-1]
        assert appended["role"] == "tool"
        assert appended["tool_name"] == "clinical_trials_search"
        assert "trialgpt.app" in appended["content"]
        assert len(result["messages"]) == 3

    def test_action_event_precedes_invocation(self, turn_config, run_cfg, status_channel):
        seen_before_invoke = []

        def invoke(args, cfg):
            seen_before_invoke.extend(status_channel.statuses)
            return "done"

        fake_tool = MagicMock()
        fake_tool.invoke.side_effect = invoke
        with patch("healthnav.agent.nodes.get_tool", return_value=fake_tool):
            tools({"messages": [QUESTION, TOOL_CALL], "curated_context": "CTX"}, run_cfg)

        assert seen_before_invoke == [ACTION]
        action = status_channel.events[0][1]["action"]
        assert action == {"name": "clinical_trials_search", "arguments": {}}
        tool_config = fake_tool.invoke.call_args.args[1]
        assert tool_config["curated_context"] == "CTX"
        assert tool_config["patient_id"] == PATIENT_ID

    def test_tool_error_propagates(self, turn_config, run_cfg):
        fake_tool = MagicMock()
        fake_tool.invoke.side_effect = RuntimeError("tool broke")
        with patch("healthnav.agent.nodes.get_tool", return_value=fake_tool):
            with pytest.raises(RuntimeError):
                tools({"messages": [QUESTION, TOOL_CALL]}, run_cfg)


# ------------------------------------------------------------------
# prettify
# ------------------------------------------------------------------


class TestPrettify:
    def _run(self, content):
        state = {"messages": [QUESTION, {"role": "assistant", "content": content}]}
        return prettify(state)["messages"][-1]["content"]

    def test_strips_code_fences(self):
        assert self._run("```html\n<p>Your LDL is fine.</p>\n```") == "<p>Your LDL is fine.</p>"

    def test_markdown_link_opens_new_tab(self):
        out = self._run("Try [TrialGPT](https://trialgpt.app).")
        assert out == 'Try <a href="https://trialgpt.app" target="_blank">TrialGPT</a>.'

    def test_anchor_gets_target(self):
        out = self._run("Use <a href='https://trialgpt.app'>TrialGPT</a>")
        assert out == 'Use <a href="https://trialgpt.app" target="_blank">TrialGPT</a>'

    def test_anchor_with_target_unchanged(self):
        text = "Use <a href='https://trialgpt.app' target='_blank'>TrialGPT</a>"
        assert self._run(text) == text

    def test_other_content_passes_through(self):
        text = "LDL 160 mg/dL [lab.pdf, 2025-04-14]; see [guide](https://example.org)."
        assert self._run(text) == text

    def test_does_not_mutate_input(self):
        final = {"role": "assistant", "content": "```\nhi\n```"}
        state = {"messages": [QUESTION, final]}
        prettify(state)
        assert final["content"] == "```\nhi\n```"


# ------------------------------------------------------------------
# save_context / persist_turn
# ------------------------------------------------------------------


class TestSaveContext:
    def test_emits_three_events_and_writes_memory_once(
        self, turn_config, run_cfg, status_channel, memory_store, inline_detached
    ):
        with patch(
            "healthnav.agent.nodes.suggestions_from_conversation",
            return_value=["Is 160 high?", "What lowers LDL?"],
        ):
            result = save_context(
                {"messages": [QUESTION, ANSWER], "memory_store": memory_store}, run_cfg
            )

        assert result == {}
        assert status_channel.statuses == [ANSWER_READY, SUGGESTIONS_PENDING, SUGGESTIONS_READY]
        assert status_channel.events[0][1]["answer"] == ANSWER["content"]
        assert status_channel.events[2][1]["suggestions"] == ["Is 160 high?", "What lowers LDL?"]
        memory_store.remember.assert_called_once_with(
            QUESTION["content"], ANSWER["content"], PATIENT_ID, turn_config["system_time"]
        )

    def test_trailing_work_is_detached(self, turn_config, run_cfg, status_channel, memory_store):
        with patch("healthnav.agent.nodes.run_detached") as detached:
            save_context({"messages": [QUESTION, ANSWER], "memory_store": memory_store}, run_cfg)
        assert status_channel.statuses == [ANSWER_READY]
        assert detached.call_args.args[0] is persist_turn
        memory_store.remember.assert_not_called()

    def test_channel_failure_is_absorbed(self, turn_config, run_cfg, memory_store):
        turn_config["status"] = MagicMock()
        turn_config["status"].send_to_user.side_effect = RuntimeError("push down")
        with patch("healthnav.agent.nodes.run_detached"):
            assert save_context(
                {"messages": [QUESTION, ANSWER], "memory_store": memory_store}, run_cfg
            ) == {}

    def test_memory_failure_is_only_logged(self, turn_config, status_channel, memory_store, caplog):
        memory_store.remember.side_effect = ConnectionError("index down")
        persist_turn([QUESTION, ANSWER], QUESTION["content"], ANSWER["content"], memory_store, turn_config)
        assert status_channel.statuses == [SUGGESTIONS_PENDING]
        assert "Saving context failed" in caplog.text

    def test_suggestion_failure_is_only_logged(self, turn_config, status_channel, memory_store):
        with patch(
            "healthnav.agent.nodes.suggestions_from_conversation",
            side_effect=ValueError("bad json"),
        ):
            persist_turn([QUESTION, ANSWER], QUESTION["content"], ANSWER["content"], memory_store, turn_config)
        memory_store.remember.assert_called_once()
        assert SUGGESTIONS_READY not in status_channel.statuses


# ------------------------------------------------------------------
# Shared memory store
# ------------------------------------------------------------------


class TestMemoryStoreSingleton:
    def test_concurrent_first_use_builds_one_store(self):
        created = []

        def slow_store():
            time.sleep(0.05)
            store = MagicMock()
            created.append(store)
            return store

        barrier = threading.Barrier(4)
        results = []

        def first_use():
            barrier.wait()
            results.append(_get_memory_store())

        with (
            patch("healthnav.agent.nodes._memory_store", None),
            patch("healthnav.agent.nodes.MemoryStore", side_effect=slow_store),
        ):
            threads = [threading.Thread(target=first_use) for _ in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert len(created) == 1
        assert all(store is created[0] for store in results)
