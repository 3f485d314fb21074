"""
End-to-end conversations against a live in-memory CRM.

The model is scripted; the tools, the registry, the failover policy and the
offline replies are all real.
"""

import json

import pytest
from dealpilot import DealPilot, Settings
from dealpilot.crm import CLOSED_WON, NEGOTIATION, PROPOSAL, Deal, InMemoryCRM
from dealpilot.degraded import DEGRADED_MARKER
from dealpilot.models import ASSISTANT_ROLE, USER_ROLE, ToolCall


@pytest.fixture
def crm():
    return InMemoryCRM(
        deals=[
            Deal(id="d1", title="Website redesign", value=10000, status=NEGOTIATION),
            Deal(id="d2", title="ERP integration", value=5000, status=PROPOSAL),
        ]
    )


@pytest.fixture
def make_pilot(crm):
    def factory(llm, **kwargs):
        return DealPilot(crm=crm, llm=llm, settings=Settings(_env_file=None), **kwargs)

    return factory


class TestConversations:
    @pytest.mark.asyncio
    async def test_answer_grounded_in_search(self, scripted_llm, make_pilot):
        llm = scripted_llm(
            [ToolCall(id="call_1", function_name="search_deals", function_args="{}")],
            ["You have 2 open deals worth R$ 15,000."],
        )
        pilot = make_pilot(llm)

        await pilot.send_message("What deals are open?")

        assert [(m.role, m.content) for m in pilot.messages] == [
            (USER_ROLE, "What deals are open?"),
            (ASSISTANT_ROLE, "You have 2 open deals worth R$ 15,000."),
        ]
        tool_result = llm.calls[1][-1]
        assert tool_result["tool_call_id"] == "call_1"
        result = json.loads(tool_result["content"])
        assert result["count"] == 2
        assert result["total_value"] == 15000

        invocation = pilot.messages[-1].tool_calls[0]
        assert invocation.tool_name == "search_deals"
        assert invocation.result["count"] == 2

    @pytest.mark.asyncio
    async def test_tool_mutates_crm(self, scripted_llm, make_pilot, crm):
        pilot = make_pilot(
            scripted_llm(
                [
                    ToolCall(
                        function_name="move_deal",
                        function_args='{"deal_id": "d2", "new_status": "CLOSED_WON"}',
                    )
                ],
                ["Done."],
            )
        )

        await pilot.send_message("Mark the ERP deal as won")

        assert crm.get_deal("d2").status == CLOSED_WON
        assert pilot.messages[-1].content == "Done."

    @pytest.mark.asyncio
    async def test_invalid_arguments_are_reported_to_the_model(
        self, scripted_llm, make_pilot, crm
    ):
        llm = scripted_llm(
            [
                ToolCall(
                    function_name="move_deal",
                    function_args='{"deal_id": "d2", "new_status": "WON"}',
                )
            ],
            ["That stage does not exist."],
        )
        pilot = make_pilot(llm)

        await pilot.send_message("Move the ERP deal to WON")

        assert crm.get_deal("d2").status == PROPOSAL
        assert "Invalid arguments for 'move_deal'" in llm.calls[1][-1]["content"]
        assert pilot.messages[-1].tool_calls[0].is_error
        assert pilot.last_error is None

    @pytest.mark.asyncio
    async def test_quota_failover(self, scripted_llm, make_pilot):
        pilot = make_pilot(
            scripted_llm(error=Exception("Error 429: Too Many Requests")),
            secondary_llm=scripted_llm(["Done."]),
        )

        await pilot.send_message("Summarize my week")

        assert [m.content for m in pilot.messages] == ["Summarize my week", "Done."]
        assert pilot.last_error is None

    @pytest.mark.asyncio
    async def test_total_outage_uses_live_snapshot(self, scripted_llm, make_pilot, crm):
        crm.add_deal(Deal(id="d3", title="Training", value=2500, status=NEGOTIATION))
        pilot = make_pilot(
            scripted_llm(error=Exception("quota exceeded")),
            secondary_llm=scripted_llm(error=Exception("quota exceeded")),
        )

        await pilot.send_message("How is my pipeline?")

        reply = pilot.messages[-1].content
        assert DEGRADED_MARKER in reply
        assert "Active Deals: 3" in reply
        assert "R$ 17,500" in reply
        assert pilot.last_error is None
