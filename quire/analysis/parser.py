"""
Fixture Parameter Extraction.

Uses tree-sitter to read the declared signature of a test body or a fixture
factory and recover the fixtures it requests.

Fixtures are requested through keyword-only parameters:

    async def test_login(*, page, user): ...
    async def test_renamed(*, renamed=use("asdf")): ...

The first requests ``page`` and ``user``; the second requests ``asdf`` and
binds it locally as ``renamed``. Positional parameters are rejected.
"""

import ast
import inspect
import textwrap
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import tree_sitter_python as ts_python
from tree_sitter import Language, Node, Parser


# Initialize tree-sitter Python language
PY_LANGUAGE = Language(ts_python.language())

# Parameter node types that can carry a keyword-only fixture request
_PARAMETER_TYPES = (
    "identifier",
    "typed_parameter",
    "default_parameter",
    "typed_default_parameter",
)
_SPLAT_TYPES = ("list_splat_pattern", "dictionary_splat_pattern")

_KIND_NAMES = {
    inspect.Parameter.KEYWORD_ONLY: "keyword",
    inspect.Parameter.VAR_POSITIONAL: "splat",
    inspect.Parameter.VAR_KEYWORD: "splat",
}


@dataclass(frozen=True)
class SourceLocation:
    """Location in source code."""
    file_path: str
    line: int
    column: int = 0

    def __str__(self) -> str:
        return f"{self.file_path}:{self.line}"


@dataclass(frozen=True)
class ParameterRequest:
    """A fixture requested by a function, and the name it is bound to locally."""
    name: str
    alias: str

    @property
    def is_renamed(self) -> bool:
        return self.name != self.alias


class FixtureUse:
    """Marker default produced by :func:`use`."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"use({self.name!r})"


def use(name: str) -> Any:
    """
    Request fixture ``name`` under a different local parameter name.

    Example:
        >>> @it("should use asdf")
        ... async def _(*, renamed=use("asdf")):
        ...     assert renamed == 123
    """
    return FixtureUse(name)


class DestructuringRequiredError(TypeError):
    """Raised when a function declares a parameter that is not a keyword-only fixture request."""

    def __init__(
        self,
        parameter: str,
        location: SourceLocation | None = None,
        reason: str | None = None,
    ) -> None:
        self.parameter = parameter
        self.location = location
        message = reason or "Fixture parameters must be keyword-only"
        super().__init__(f"{message}: {parameter}")


class SignatureParser:
    """
    Tree-sitter based extractor of fixture requests.

    Works on source text, so the result depends only on how the function is
    written, never on whether it runs.

    Usage:
        parser = SignatureParser()
        requests = parser.parse_callable(my_test)
        # or
        requests = parser.parse_source("def f(*, a): ...", "f.py")
    """

    USE_MARKER = "use"

    def __init__(self):
        """Initialize the parser with tree-sitter Python language."""
        self._parser = Parser(PY_LANGUAGE)

    def parse_callable(self, fn: Any) -> list[ParameterRequest]:
        """
        Extract the fixture requests declared by a function.

        Args:
            fn: Test body or fixture factory

        Returns:
            Ordered list of ParameterRequest

        Raises:
            DestructuringRequiredError: If fn is not a function or declares
                anything other than keyword-only fixture requests
        """
        target = inspect.unwrap(fn) if callable(fn) else fn
        if not inspect.isfunction(target):
            raise DestructuringRequiredError(
                repr(fn), reason="Expected a function declaring fixtures"
            )

        try:
            lines, first_line = inspect.getsourcelines(target)
            file_path = inspect.getsourcefile(target) or target.__code__.co_filename
        except (OSError, TypeError):
            return self._parse_signature_object(target)

        source = textwrap.dedent("".join(lines))
        if target.__name__ == "<lambda>":
            return self._parse_lambda(target, source, file_path, max(first_line, 1))
        try:
            return self.parse_source(source, file_path, max(first_line, 1))
        except LookupError:
            return self._parse_signature_object(target)

    def _parse_lambda(
        self,
        target: Callable[..., Any],
        source_code: str,
        file_name: str,
        first_line: int,
    ) -> list[ParameterRequest]:
        """
        Parse the lambda in the source lines that is ``target``.

        The lines may hold several lambdas, as in a dict of fixture factories.
        The one whose parameters match the runtime signature is used; when
        none does, the signature itself is.
        """
        expected = [
            (param.name, _KIND_NAMES.get(param.kind, "positional"))
            for param in inspect.signature(target).parameters.values()
        ]
        tree = self._parser.parse(bytes(source_code, "utf-8"))
        for node in self._find_all(tree.root_node, "lambda"):
            params = node.child_by_field_name("parameters")
            if params is None:
                if not expected:
                    return []
                continue
            if self._declared_kinds(params) != expected:
                continue
            requests = self._parse_parameters(params, file_name, first_line)
            # Same names but different use() targets: keep looking
            if requests == self._parse_signature_object(target):
                return requests
        return self._parse_signature_object(target)

    def parse_source(
        self,
        source_code: str,
        file_name: str = "<string>",
        first_line: int = 1,
        kind: str = "function_definition",
    ) -> list[ParameterRequest]:
        """
        Extract fixture requests from the first function in a source snippet.

        Args:
            source_code: Python source containing the function
            file_name: Name to use for source location reporting
            first_line: Line number of the snippet's first line in file_name
            kind: "function_definition" or "lambda"

        Returns:
            Ordered list of ParameterRequest

        Raises:
            LookupError: If the snippet contains no function of the given kind
            DestructuringRequiredError: On positional or splat parameters
        """
        tree = self._parser.parse(bytes(source_code, "utf-8"))
        node = self._find_first(tree.root_node, kind)
        if node is None:
            raise LookupError(f"No {kind} found in {file_name}")

        params = node.child_by_field_name("parameters")
        if params is None:
            return []
        return self._parse_parameters(params, file_name, first_line)

    def _find_all(self, node: Node, kind: str) -> list[Node]:
        """Pre-order list of every node of the given type."""
        found = [node] if node.type == kind else []
        for child in node.children:
            found.extend(self._find_all(child, kind))
        return found

    def _declared_kinds(self, node: Node) -> list[tuple[str, str]]:
        """(name, kind) per parameter, with the kinds named as in _KIND_NAMES."""
        declared: list[tuple[str, str]] = []
        keyword_only = False
        for child in node.named_children:
            if child.type == "comment" or child.type == "positional_separator":
                continue
            if child.type == "keyword_separator":
                keyword_only = True
                continue
            name, is_splat = self._parameter_name(child)
            if is_splat:
                kind = "splat"
                keyword_only = True
            else:
                kind = "keyword" if keyword_only else "positional"
            declared.append((name, kind))
        return declared

    def _find_first(self, node: Node, kind: str) -> Node | None:
        """Pre-order search for the outermost node of the given type."""
        if node.type == kind:
            return node
        for child in node.children:
            found = self._find_first(child, kind)
            if found is not None:
                return found
        return None

    def _parse_parameters(
        self,
        node: Node,
        file_name: str,
        first_line: int,
    ) -> list[ParameterRequest]:
        """Walk a parameters/lambda_parameters node."""
        requests: list[ParameterRequest] = []
        keyword_only = False

        for child in node.named_children:
            if child.type == "comment" or child.type == "positional_separator":
                continue
            if child.type == "keyword_separator":
                keyword_only = True
                continue

            name, is_splat = self._parameter_name(child)
            if is_splat or not keyword_only or child.type not in _PARAMETER_TYPES:
                raise DestructuringRequiredError(
                    name, self._get_location(child, file_name, first_line)
                )
            requests.append(self._parse_request(child, name, file_name, first_line))

        return requests

    def _parameter_name(self, node: Node) -> tuple[str, bool]:
        """Return (name, is_splat) for a parameter node."""
        if node.type == "identifier":
            return self._get_node_text(node), False
        if node.type in _SPLAT_TYPES:
            for sub in node.named_children:
                if sub.type == "identifier":
                    return self._get_node_text(sub), True
            return self._get_node_text(node), True
        if node.type in ("default_parameter", "typed_default_parameter"):
            name_node = node.child_by_field_name("name")
            if name_node is not None:
                return self._get_node_text(name_node), False
        if node.type == "typed_parameter":
            # typed_parameter wraps the identifier or a splat pattern
            for sub in node.named_children:
                if sub.type == "identifier":
                    return self._get_node_text(sub), False
                if sub.type in _SPLAT_TYPES:
                    return self._parameter_name(sub)
        return self._get_node_text(node), False

    def _parse_request(
        self,
        node: Node,
        alias: str,
        file_name: str,
        first_line: int,
    ) -> ParameterRequest:
        """Build the request for one keyword-only parameter."""
        value = node.child_by_field_name("value")
        if value is None or value.type != "call" or not self._is_use_call(value):
            return ParameterRequest(name=alias, alias=alias)

        arguments = value.child_by_field_name("arguments")
        literals = [] if arguments is None else [
            arg for arg in arguments.named_children if arg.type != "comment"
        ]
        if len(literals) != 1 or literals[0].type not in ("string", "concatenated_string"):
            raise DestructuringRequiredError(
                alias,
                self._get_location(node, file_name, first_line),
                reason="use() takes a single string literal",
            )
        name = ast.literal_eval(self._get_node_text(literals[0]))
        return ParameterRequest(name=name, alias=alias)

    def _is_use_call(self, node: Node) -> bool:
        """True for ``use(...)`` and ``<module>.use(...)`` calls."""
        function = node.child_by_field_name("function")
        if function is None:
            return False
        if function.type == "identifier":
            return self._get_node_text(function) == self.USE_MARKER
        if function.type == "attribute":
            attr = function.child_by_field_name("attribute")
            return attr is not None and self._get_node_text(attr) == self.USE_MARKER
        return False

    def _parse_signature_object(self, fn: Callable[..., Any]) -> list[ParameterRequest]:
        """Apply the same rules to runtime signature metadata when no source exists."""
        code = getattr(fn, "__code__", None)
        location = (
            SourceLocation(code.co_filename, code.co_firstlineno) if code is not None else None
        )
        requests: list[ParameterRequest] = []
        for param in inspect.signature(fn).parameters.values():
            if param.kind is not inspect.Parameter.KEYWORD_ONLY:
                raise DestructuringRequiredError(param.name, location)
            if isinstance(param.default, FixtureUse):
                requests.append(ParameterRequest(name=param.default.name, alias=param.name))
            else:
                requests.append(ParameterRequest(name=param.name, alias=param.name))
        return requests

    def _get_node_text(self, node: Node) -> str:
        """Get the text content of a node."""
        return node.text.decode("utf-8") if node.text is not None else ""

    def _get_location(self, node: Node, file_name: str, first_line: int) -> SourceLocation:
        """Get source location for a node, relative to the file."""
        row, column = node.start_point
        return SourceLocation(
            file_path=file_name,
            line=first_line + row,
            column=column,
        )


# Convenience function
def extract_parameters(fn: Any) -> list[ParameterRequest]:
    """
    Extract the fixture requests declared by a test body or fixture factory.

    Convenience function that creates a parser and parses the function.
    """
    parser = SignatureParser()
    return parser.parse_callable(fn)
