"""MSBuild project tree built on xml.etree.ElementTree.

Keeps what a round trip through ElementTree would otherwise lose for a
hand-maintained project file: comments (including those ahead of the root
element), the XML declaration, a UTF-8 BOM, CRLF line endings, the file
mode, the default MSBuild namespace and the indentation of surrounding
elements when items are added or removed.
"""
from __future__ import annotations

import codecs
import logging
import os
import re
import shutil
import tempfile
import xml.etree.ElementTree as ET
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

_DECLARATION_RE = re.compile(rb"^\s*(<\?xml[^>]*\?>)")
# Comments, processing instructions and a doctype ahead of the root element
_PROLOG_RE = re.compile(rb"(?:\s+|<!--.*?-->|<\?.*?\?>|<!DOCTYPE[^>]*>)*", re.DOTALL)

_GROUP_TAGS = frozenset({
    "propertygroup", "itemgroup", "importgroup", "itemdefinitiongroup",
    "choose", "when", "otherwise", "projectextensions",
})


class ProjectElementKind(Enum):
    """Kinds of project elements the converter distinguishes."""

    PROPERTY = "property"
    ITEM = "item"
    IMPORT = "import"
    TARGET = "target"
    GROUP = "group"
    METADATA = "metadata"
    OTHER = "other"


def local_name(tag) -> str:
    """Element name without the ``{namespace}`` prefix ('' for comments)."""
    if not isinstance(tag, str):
        return ""
    return tag.split('}', 1)[1] if '}' in tag else tag


class ProjectTree:
    """A loaded project file with parent links and formatting-aware mutation."""

    def __init__(self, path: str, root: ET.Element, *, declaration: Optional[bytes] = None,
                 prolog: str = "\n", bom: bool = False, newline: str = "\n",
                 trailing_newline: bool = True):
        self.path = os.path.abspath(path)
        self.directory = os.path.dirname(self.path)
        self.root = root
        self.namespace = root.tag[1:].split('}', 1)[0] if root.tag.startswith('{') else None
        self.has_changes = False
        self._declaration = declaration
        self._prolog = prolog
        self._bom = bom
        self._newline = newline
        self._trailing_newline = trailing_newline
        self._parents: Dict[ET.Element, ET.Element] = {
            child: parent for parent in root.iter() for child in parent
        }
        self._indent_unit = self._detect_indent_unit()

    @classmethod
    def load(cls, path: str) -> "ProjectTree":
        """Parse a project file.

        Raises:
            ET.ParseError: If the file is not well-formed XML.
            OSError: If the file cannot be read.
        """
        with open(path, "rb") as fh:
            raw = fh.read()
        bom = raw.startswith(codecs.BOM_UTF8)
        body = raw[len(codecs.BOM_UTF8):] if bom else raw
        m = _DECLARATION_RE.match(body)
        prolog = _PROLOG_RE.match(body, m.end() if m else 0).group(0)
        parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
        parser.feed(body)
        root = parser.close()
        namespace = root.tag[1:].split('}', 1)[0] if root.tag.startswith('{') else None
        if namespace:
            ET.register_namespace("", namespace)
        return cls(
            path,
            root,
            declaration=m.group(1) if m else None,
            prolog=prolog.decode("utf-8").replace("\r\n", "\n"),
            bom=bom,
            newline="\r\n" if b"\r\n" in body else "\n",
            trailing_newline=body.rstrip(b" \t").endswith(b"\n"),
        )

    # -- navigation ---------------------------------------------------------

    def elements(self) -> List[ET.Element]:
        """Every element below the root in document order, comments excluded."""
        return [e for e in self.root.iter() if e is not self.root and isinstance(e.tag, str)]

    def parent(self, element: ET.Element) -> Optional[ET.Element]:
        return self._parents.get(element)

    def is_attached(self, element: ET.Element) -> bool:
        """False once the element or one of its ancestors has been removed."""
        while element is not self.root:
            parent = self._parents.get(element)
            if parent is None:
                return False
            element = parent
        return True

    def kind(self, element: ET.Element) -> ProjectElementKind:
        name = local_name(element.tag).lower()
        if not name:
            return ProjectElementKind.OTHER
        if name in _GROUP_TAGS:
            return ProjectElementKind.GROUP
        if name == "import":
            return ProjectElementKind.IMPORT
        if name == "target":
            return ProjectElementKind.TARGET
        parent = self._parents.get(element)
        parent_name = local_name(parent.tag).lower() if parent is not None else ""
        if parent_name == "propertygroup":
            return ProjectElementKind.PROPERTY
        if parent_name == "itemgroup":
            return ProjectElementKind.ITEM
        grandparent = self._parents.get(parent) if parent is not None else None
        if grandparent is not None and local_name(grandparent.tag).lower() == "itemgroup":
            return ProjectElementKind.METADATA
        return ProjectElementKind.OTHER

    @staticmethod
    def item_type(element: ET.Element) -> str:
        return local_name(element.tag)

    # -- metadata -----------------------------------------------------------

    @staticmethod
    def get_metadata(item: ET.Element, name: str) -> Optional[str]:
        """Metadata value expressed either as an attribute or a child element."""
        wanted = name.lower()
        for key, value in item.attrib.items():
            if key.lower() == wanted:
                return value
        for child in item:
            if local_name(child.tag).lower() == wanted:
                return child.text or ""
        return None

    def set_metadata(self, item: ET.Element, name: str, value: str) -> None:
        """Update existing metadata in place, otherwise add it as an attribute."""
        wanted = name.lower()
        for child in item:
            if local_name(child.tag).lower() == wanted:
                child.text = value
                self.has_changes = True
                return
        for key in item.attrib:
            if key.lower() == wanted:
                item.set(key, value)
                self.has_changes = True
                return
        item.set(name, value)
        self.has_changes = True

    def set_attribute(self, element: ET.Element, name: str, value: str) -> None:
        element.set(name, value)
        self.has_changes = True

    # -- paths --------------------------------------------------------------

    def full_path(self, value: Optional[str]) -> Optional[str]:
        """Resolve ``.\\`` and ``..\\`` paths against the project directory.

        Values with wildcards or ``$(Property)`` syntax, and absolute paths,
        are returned unchanged.
        """
        if value is None or not value.strip():
            return None
        value = value.strip()
        if "*" in value or "$(" in value:
            return value
        if value.startswith(("..\\", ".\\", "../", "./")):
            return os.path.normpath(os.path.join(self.directory, value.replace("\\", "/")))
        return value

    # -- mutation -----------------------------------------------------------

    def remove(self, element: ET.Element) -> None:
        """Remove an element, and its parent group when that leaves it empty."""
        parent = self._parents.get(element)
        if parent is None:
            return
        self._detach(element)
        has_children = any(isinstance(child.tag, str) for child in parent)
        if not has_children and parent is not self.root:
            self._detach(parent)

    def add_item_group(self) -> ET.Element:
        """Create an ItemGroup after the last ItemGroup (or PropertyGroup)."""
        group = ET.Element(self._qualify("ItemGroup"))
        anchor = None
        for wanted in ("itemgroup", "propertygroup"):
            candidates = [c for c in self.root if local_name(c.tag).lower() == wanted]
            if candidates:
                anchor = candidates[-1]
                break
        children = list(self.root)
        if anchor is None:
            self._append_child(self.root, group)
        else:
            index = children.index(anchor)
            group.tail = anchor.tail
            anchor.tail = self._line(self.root, depth=1)
            self.root.insert(index + 1, group)
            self._parents[group] = self.root
            self.has_changes = True
        return group

    def append_item(self, group: ET.Element, item_type: str, include: str,
                    metadata: Optional[Dict[str, str]] = None) -> ET.Element:
        """Append ``<ItemType Include=... Metadata=.../>`` to an item group."""
        item = ET.Element(self._qualify(item_type))
        item.set("Include", include)
        for key, value in (metadata or {}).items():
            item.set(key, value)
        self._append_child(group, item)
        return item

    def save(self, path: Optional[str] = None) -> None:
        """Write the project atomically (temporary file then rename)."""
        target = os.path.abspath(path or self.path)
        text = ET.tostring(self.root, encoding="unicode")
        if self._trailing_newline:
            text += "\n"
        if self._declaration:
            text = self._declaration.decode("utf-8") + self._prolog + text
        else:
            text = self._prolog.lstrip() + text
        if self._newline != "\n":
            text = text.replace("\n", self._newline)
        data = text.encode("utf-8")
        if self._bom:
            data = codecs.BOM_UTF8 + data
        fd, tmp = tempfile.mkstemp(prefix=".pcconvert-", dir=os.path.dirname(target))
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            if os.path.exists(target):
                shutil.copymode(target, tmp)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        self.has_changes = False

    # -- rendering ----------------------------------------------------------

    @staticmethod
    def to_xml_string(element: ET.Element) -> str:
        """Single-line ``<Tag attr="value"/>`` rendering for logs."""
        attrs = " ".join(f'{k}="{v}"' for k, v in element.attrib.items())
        name = local_name(element.tag)
        return f"<{name} {attrs}/>" if attrs else f"<{name}/>"

    def location(self, element: ET.Element) -> str:
        return f"{self.path} <{local_name(element.tag)}>"

    # -- internals ----------------------------------------------------------

    def _qualify(self, name: str) -> str:
        return f"{{{self.namespace}}}{name}" if self.namespace else name

    def _detect_indent_unit(self) -> str:
        text = self.root.text or ""
        if "\n" in text:
            unit = text.rsplit("\n", 1)[1]
            if unit and not unit.strip():
                return unit
        return "  "

    def _depth(self, element: ET.Element) -> int:
        depth = 0
        while element is not self.root:
            element = self._parents[element]
            depth += 1
        return depth

    def _line(self, parent: ET.Element, depth: Optional[int] = None) -> str:
        """Newline plus indentation for a child of parent (or an explicit depth)."""
        if depth is None:
            depth = self._depth(parent) + 1
        return "\n" + self._indent_unit * depth

    def _append_child(self, parent: ET.Element, child: ET.Element) -> None:
        children = list(parent)
        if children:
            last = children[-1]
            child.tail = last.tail
            last.tail = self._line(parent)
        else:
            parent.text = self._line(parent)
            child.tail = self._line(parent, depth=self._depth(parent))
        parent.append(child)
        self._parents[child] = parent
        self.has_changes = True

    def _detach(self, element: ET.Element) -> None:
        parent = self._parents.pop(element)
        children = list(parent)
        index = children.index(element)
        # Whitespace after the element becomes whitespace after its predecessor
        if index > 0:
            children[index - 1].tail = element.tail
        else:
            parent.text = element.tail
        parent.remove(element)
        self.has_changes = True
        logger.debug("Removed element %s from %s", self.to_xml_string(element), self.path)


class ElementPath:
    """The path-like value of an item or import and its resolved full path.

    ``Reference`` items use their ``HintPath`` metadata, other items their
    ``Include`` and imports their ``Project`` attribute.
    """

    def __init__(self, tree: ProjectTree, element: ET.Element):
        self.tree = tree
        self.element = element
        self.kind = tree.kind(element)
        self.hint_path = False
        self.original_path: Optional[str] = None

        if self.kind is ProjectElementKind.ITEM:
            self.original_path = element.get("Include")
            if tree.item_type(element).lower() == "reference":
                self.original_path = tree.get_metadata(element, "HintPath")
                if self.original_path and self.original_path.strip():
                    self.hint_path = True
        elif self.kind is ProjectElementKind.IMPORT:
            self.original_path = element.get("Project")

        self.full_path = tree.full_path(self.original_path)

    def set(self, path: str) -> None:
        """Point the element at a new path.

        Raises:
            TypeError: If the element is neither an item nor an import.
        """
        if self.kind is ProjectElementKind.ITEM:
            if self.hint_path:
                self.tree.set_metadata(self.element, "HintPath", path)
            else:
                self.tree.set_attribute(self.element, "Include", path)
        elif self.kind is ProjectElementKind.IMPORT:
            self.tree.set_attribute(self.element, "Project", path)
        else:
            raise TypeError(f"Cannot set a path on <{local_name(self.element.tag)}>")
