"""Tests for the heuristic code validator."""

import pytest

from codeforge.services.code_validator import CodeValidator, is_plausible_code, validate_code


VALID_COMPONENT = """import React, { useState } from 'react';

function Counter() {
  const [count, setCount] = useState(0);
  return <button onClick={() => setCount(count + 1)}>{count}</button>;
}

export default Counter;
"""


@pytest.mark.unit
class TestCodeValidator:
    """Test CodeValidator checks."""

    def test_valid_component(self):
        """Balanced, complete code passes."""
        result = CodeValidator().validate(VALID_COMPONENT)
        assert result.valid is True
        assert result.errors == []
        assert result.suggestions == []

    def test_unclosed_function_body(self):
        """A missing closing brace is the only reported problem."""
        result = validate_code("function App(){ return <div>Hi</div>")

        assert result.valid is False
        assert result.errors == ["Mismatched braces: 1 opening, 0 closing"]
        assert result.suggestions == ["Check for missing closing braces '}'"]

    def test_reports_every_problem_class(self):
        """All checks run; one pass reports parentheses, brackets and truncation together."""
        result = validate_code("const items = [load(a,")

        assert "Mismatched parentheses: 1 opening, 0 closing" in result.errors
        assert "Mismatched brackets: 1 opening, 0 closing" in result.errors
        assert "Code appears truncated (ends with incomplete statement)" in result.errors
        assert len(result.errors) == len(result.suggestions)

    def test_trailing_comment_is_truncation(self):
        """Code whose last line is a comment looks cut off."""
        result = validate_code("const x = 1;\n// and now the render function")
        assert result.errors == ["Code appears truncated (ends with comment)"]

    def test_jsx_tag_slack(self):
        """Two unclosed component tags are tolerated; three are not."""
        validator = CodeValidator()

        assert validator.validate("const A = () => (<Card><Card>);").valid is True
        result = validator.validate("const A = () => (<Card><Card><Card>);")
        assert result.errors == ["Possible incomplete JSX - missing closing tags"]

    def test_jsx_slack_is_configurable(self):
        """A stricter slack flags fewer unclosed tags."""
        result = CodeValidator(jsx_tag_slack=0).validate("const A = () => (<Card>);")
        assert result.valid is False

    def test_render_call_only_when_required(self):
        """The render-call check is opt-in."""
        assert CodeValidator().validate(VALID_COMPONENT).valid is True

        result = CodeValidator(require_render_call=True).validate(VALID_COMPONENT)
        assert result.errors == ["Missing React render call"]

        with_root = VALID_COMPONENT + "ReactDOM.createRoot(root).render(<Counter />);\n"
        assert CodeValidator(require_render_call=True).validate(with_root).valid is True

    def test_validation_is_pure(self):
        """Validating twice gives equal results and leaves the input alone."""
        code = "function App(){ return <div>Hi</div>"
        validator = CodeValidator()

        first = validator.validate(code)
        second = validator.validate(code)

        assert first == second
        assert code == "function App(){ return <div>Hi</div>"

    def test_empty_input(self):
        """Empty code has nothing to mismatch."""
        assert validate_code("").valid is True
        assert validate_code(None).valid is True


@pytest.mark.unit
class TestIsPlausibleCode:
    """Test the code-vs-prose heuristic."""

    def test_accepts_code(self):
        """A component is plausible code."""
        assert is_plausible_code(VALID_COMPONENT) is True

    def test_rejects_short_or_empty(self):
        """Very short replies are rejected."""
        assert is_plausible_code("") is False
        assert is_plausible_code("const x = 1;") is False

    def test_rejects_prose(self):
        """An apology has no code shape."""
        assert is_plausible_code("I'm sorry, but I cannot help with fixing this code today.") is False

    def test_rejects_long_explanations(self):
        """Code buried in many sentences of prose is rejected."""
        prose = " ".join(["This is a sentence. Another follows."] * 4)
        assert is_plausible_code("const x = 1; " + prose) is False
