"""Tests for the auto-fix loop."""

import asyncio

import pytest

from codeforge.constants import ModelRole
from codeforge.errors import CircuitOpenError, GatewayTransportError, QueueFullError
from codeforge.services.auto_fix import AutoFixLoop, extract_llm_limitations
from codeforge.services.code_validator import CodeValidator

BROKEN = "function App(){ return <div>Hi</div>"
FIXED = "function App(){ return <div>Hi</div> }"
STILL_BROKEN = "function App(){ return <div>Hi</div>; { }"


class ScriptedGateway:
    """Replies from a list; exceptions in the list are raised."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def complete(self, system_prompt, user_prompt, max_tokens=None, *, role=None, temperature=None, cancel=None):
        self.calls.append({'system': system_prompt, 'user': user_prompt, 'role': role, 'cancel': cancel})
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.mark.unit
class TestAutoFixLoop:
    """Test AutoFixLoop termination and outcomes."""

    @pytest.mark.asyncio
    async def test_fixes_on_first_attempt(self, gateway, fake_transport):
        """A valid reply on the first call ends the loop."""
        fake_transport.responses = [FIXED]
        loop = AutoFixLoop(gateway, CodeValidator())

        result = await loop.fix(BROKEN, ["Mismatched braces: 1 opening, 0 closing"], 2)

        assert result.fixed is True
        assert result.attempts == 1
        assert result.code == FIXED
        assert result.message == "Code was automatically fixed after 1 attempt(s)"
        user_prompt = fake_transport.calls[0]['messages'][1]['content']
        assert "Mismatched braces: 1 opening, 0 closing" in user_prompt
        assert BROKEN in user_prompt

    @pytest.mark.asyncio
    async def test_stops_at_max_attempts(self):
        """The loop never makes more than max_attempts calls."""
        gateway = ScriptedGateway([STILL_BROKEN, STILL_BROKEN, FIXED])
        loop = AutoFixLoop(gateway)

        result = await loop.fix(BROKEN, ["Mismatched braces: 1 opening, 0 closing"], 2)

        assert result.fixed is False
        assert result.attempts == 2
        assert len(gateway.calls) == 2
        assert result.message == "Could not fix after 2 attempts"
        assert result.code == STILL_BROKEN
        assert result.errors == ["Mismatched braces: 2 opening, 1 closing"]

    @pytest.mark.asyncio
    async def test_uses_fixer_role_and_strips_fences(self):
        """Fix calls use the fixer role and fenced replies are unwrapped."""
        gateway = ScriptedGateway([f"```jsx\n{FIXED}\n```"])
        loop = AutoFixLoop(gateway)

        result = await loop.fix(BROKEN, ["Mismatched braces"])

        assert result.fixed is True
        assert result.code == FIXED
        assert gateway.calls[0]['role'] == ModelRole.FIXER

    @pytest.mark.asyncio
    async def test_disconnected_before_first_attempt(self):
        """No model call is made once the client has gone away."""
        gateway = ScriptedGateway([FIXED])
        loop = AutoFixLoop(gateway)

        result = await loop.fix(BROKEN, ["err"], 2, is_connected=lambda: False)

        assert result.fixed is False
        assert result.attempts == 0
        assert result.cancelled is True
        assert result.message == "Client disconnected"
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_cancel_event_stops_loop(self):
        """A set cancel event counts as a disconnect."""
        cancel = asyncio.Event()
        cancel.set()
        loop = AutoFixLoop(ScriptedGateway([FIXED]))

        result = await loop.fix(BROKEN, ["err"], cancel=cancel)

        assert result.cancelled is True
        assert result.code == BROKEN

    @pytest.mark.asyncio
    async def test_discards_prose_reply(self):
        """A reply that is not code uses up an attempt but keeps the previous code."""
        gateway = ScriptedGateway(["Sorry, I can't do that right now, please try again.", FIXED])
        loop = AutoFixLoop(gateway)

        result = await loop.fix(BROKEN, ["err"], 2)

        assert result.fixed is True
        assert result.attempts == 2
        assert "Sorry" not in gateway.calls[1]['user']
        assert BROKEN in gateway.calls[1]['user']

    @pytest.mark.asyncio
    async def test_transport_error_uses_attempt(self):
        """Ordinary gateway failures count as an attempt and the loop continues."""
        gateway = ScriptedGateway([GatewayTransportError("HTTP 500: boom", 500), FIXED])
        loop = AutoFixLoop(gateway)

        result = await loop.fix(BROKEN, ["err"], 2)

        assert result.fixed is True
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_circuit_open_propagates(self):
        """Fail-fast gateway errors are not swallowed and do not use an attempt."""
        attempts = []
        loop = AutoFixLoop(ScriptedGateway([CircuitOpenError(12.0)]))

        with pytest.raises(CircuitOpenError):
            await loop.fix(BROKEN, ["err"], 2, on_attempt=lambda *args: attempts.append(args))

        assert attempts == []

    @pytest.mark.asyncio
    async def test_queue_full_does_not_use_attempt(self):
        """Backpressure surfaces before the attempt is counted."""
        attempts = []
        loop = AutoFixLoop(ScriptedGateway([QueueFullError(20)]))

        with pytest.raises(QueueFullError):
            await loop.fix(BROKEN, ["err"], 2, on_attempt=lambda *args: attempts.append(args))

        assert attempts == []

    @pytest.mark.asyncio
    async def test_callbacks(self):
        """on_attempt and on_validation see every attempt and every validation."""
        attempts = []
        validations = []
        loop = AutoFixLoop(ScriptedGateway([STILL_BROKEN, FIXED]))

        await loop.fix(
            BROKEN,
            ["err"],
            3,
            on_attempt=lambda attempt, limit, errors: attempts.append((attempt, limit)),
            on_validation=validations.append,
        )

        assert attempts == [(1, 3), (2, 3)]
        assert [v.valid for v in validations] == [False, True]

    @pytest.mark.asyncio
    async def test_zero_budget(self):
        """With no attempts allowed the code comes back untouched."""
        gateway = ScriptedGateway([FIXED])
        result = await AutoFixLoop(gateway).fix(BROKEN, ["err"], 0)

        assert result.fixed is False
        assert result.attempts == 0
        assert gateway.calls == []


@pytest.mark.unit
def test_extract_llm_limitations():
    """Limitation comments are removed from code and returned separately."""
    code = (
        "const data = [];\n"
        "// Note: I cannot access live data from the weather API\n"
        "export default data;"
    )

    cleaned, limitations = extract_llm_limitations(code)

    assert limitations == ["I cannot access live data from the weather API"]
    assert "cannot access" not in cleaned
    assert cleaned.startswith("const data = [];")
    assert cleaned.endswith("export default data;")


@pytest.mark.unit
def test_extract_llm_limitations_leaves_clean_code():
    """Ordinary comments survive untouched."""
    code = "// Note: keep this list sorted\nconst items = [];"
    assert extract_llm_limitations(code) == (code, [])
