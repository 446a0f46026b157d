from typing import Callable, Iterable, Iterator, Union

from mypy_extensions import KwArg, VarArg

# --
# # HTML templates
#
# Pages are built as trees of `Node` that serialize to a stream of strings.
# Text and attribute values are always escaped, there is no way to inject
# raw markup.

VOID_ELEMENTS: frozenset[str] = frozenset(("br", "hr", "img", "input", "link", "meta"))

TEXT_ESCAPES = str.maketrans(
	{"&": "&amp;", "<": "&lt;", ">": "&gt;", '"': "&quot;", "'": "&#x27;"}
)
ATTRIBUTE_ESCAPES = str.maketrans({"&": "&amp;", '"': "&quot;", "<": "&lt;"})

TContent = Union["Node", str, int, float, None]
TAttribute = str | int | float | bool | None


def escape(text: str) -> str:
	return text.translate(TEXT_ESCAPES)


class Node:
	__slots__ = ["name", "attributes", "children"]

	def __init__(
		self,
		name: str,
		children: Iterable[TContent] = (),
		attributes: dict[str, TAttribute] | None = None,
	):
		self.name: str = name
		self.children: list[TContent] = list(children)
		self.attributes: dict[str, TAttribute] = attributes or {}

	def iterHTML(self) -> Iterator[str]:
		yield f"<{self.name}"
		for k, v in self.attributes.items():
			if v is None or v is False:
				continue
			elif v is True:
				yield f" {k}"
			else:
				yield f' {k}="{str(v).translate(ATTRIBUTE_ESCAPES)}"'
		yield ">"
		if self.name in VOID_ELEMENTS:
			return
		for child in self.children:
			if isinstance(child, Node):
				yield from child.iterHTML()
			elif child is not None:
				yield escape(str(child))
		yield f"</{self.name}>"

	def __str__(self) -> str:
		return "".join(self.iterHTML())


TNodeFactory = Callable[[VarArg(TContent), KwArg(TAttribute)], Node]


class Markup:
	"""Exposes a `H.<tag>(*children, **attributes)` factory for each of the
	given tags. The `_` attribute stands for `class`."""

	__slots__ = ["tags"]

	def __init__(self, tags: Iterable[str]):
		self.tags: frozenset[str] = frozenset(tags)

	def __getattr__(self, name: str) -> TNodeFactory:
		if name not in self.tags:
			raise AttributeError(f"Unsupported tag: {name}")

		def factory(*children: TContent, **attributes: TAttribute) -> Node:
			return Node(
				name,
				children,
				{("class" if k == "_" else k): v for k, v in attributes.items()},
			)

		return factory


H: Markup = Markup(
	"a body h1 head html meta style table tbody td th thead title tr".split()
)


def html(*nodes: Node, doctype: str | None = None) -> Iterator[str]:
	if doctype:
		yield f"<!DOCTYPE {doctype}>\n"
	for node in nodes:
		yield from node.iterHTML()


# EOF
