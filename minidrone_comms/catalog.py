from __future__ import annotations

import json
import logging
import threading
from importlib import resources
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .command import ArgumentSpec, CommandInstance, CommandTemplate
from .errors import FrameDecodeFailure, UnknownElement
from .protocol import BufferClass

logger = logging.getLogger(__name__)

Element = Mapping[str, Any]

# project id, class id, command id (u16)
FRAME_ID_HEADER_SIZE = 4


def _children(node: Element, tag: str) -> List[Element]:
    return [child for child in node.get("children", ()) if child.get("tag") == tag]


def _attr(node: Element, key: str, default: Optional[str] = None) -> Optional[str]:
    return node.get("attrib", {}).get(key, default)


def _text(node: Element) -> str:
    return str(node.get("text") or "").strip()


def _read_json(path: Union[str, Path]) -> Element:
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def bundled_loaders() -> Dict[str, Callable[[], Element]]:
    """Loaders for the definition trees shipped with the package."""
    folder = resources.files("minidrone_comms").joinpath("definitions")
    loaders: Dict[str, Callable[[], Element]] = {}
    for entry in folder.iterdir():
        if entry.name.endswith(".json"):
            loaders[entry.name[: -len(".json")]] = lambda entry=entry: json.loads(entry.read_text("utf-8"))
    return loaders


class CommandCatalog:
    """Resolves command templates from parsed definition trees.

    Trees are loaded lazily per project and every built template is cached
    under both its name triplet and its id triplet for the catalog's lifetime.
    """

    def __init__(
        self,
        definitions: Optional[Mapping[str, Element]] = None,
        warmup: bool = False,
    ) -> None:
        if definitions is None:
            self._loaders = bundled_loaders()
        else:
            self._loaders = {name: (lambda tree=tree: tree) for name, tree in definitions.items()}

        self._trees: Dict[str, Element] = {}
        self._by_name: Dict[Tuple[str, str, str], CommandTemplate] = {}
        self._by_id: Dict[Tuple[int, int, int], CommandTemplate] = {}
        self._lock = threading.RLock()

        if warmup:
            self.warmup()

    @classmethod
    def from_directory(cls, path: Union[str, Path], warmup: bool = False) -> "CommandCatalog":
        folder = Path(path).expanduser()
        catalog = cls(definitions={}, warmup=False)
        for file in sorted(folder.glob("*.json")):
            catalog._loaders[file.stem] = lambda file=file: _read_json(file)
        if warmup:
            catalog.warmup()
        return catalog

    @property
    def projects(self) -> List[str]:
        return sorted(self._loaders)

    def warmup(self, projects: Optional[Iterable[str]] = None) -> None:
        names = list(projects) if projects is not None else self.projects
        for name in names:
            self._tree(name)
        logger.debug("catalog warmed up with %d project(s)", len(names))

    def _tree(self, project: str) -> Element:
        with self._lock:
            tree = self._trees.get(project)
            if tree is None:
                loader = self._loaders.get(project)
                if loader is None:
                    raise UnknownElement("project", project)
                tree = loader()
                if tree.get("tag") != "project":
                    raise UnknownElement("project", project)
                self._trees[project] = tree
            return tree

    def lookup_by_name(self, project: str, class_name: str, command: str) -> CommandTemplate:
        key = (project, class_name, command)
        with self._lock:
            cached = self._by_name.get(key)
            if cached is not None:
                return cached

            project_node = self._tree(project)
            context = [project]

            class_node = next(
                (node for node in _children(project_node, "class") if _attr(node, "name") == class_name),
                None,
            )
            if class_node is None:
                raise UnknownElement("class", class_name, context)
            context.append(class_name)

            command_node = next(
                (node for node in _children(class_node, "cmd") if _attr(node, "name") == command),
                None,
            )
            if command_node is None:
                raise UnknownElement("command", command, context)

            return self._remember(project_node, class_node, command_node)

    def lookup_by_id(self, project_id: int, class_id: int, command_id: int) -> CommandTemplate:
        key = (project_id, class_id, command_id)
        with self._lock:
            cached = self._by_id.get(key)
            if cached is not None:
                return cached

            project_node = None
            for name in self.projects:
                tree = self._tree(name)
                if int(_attr(tree, "id", "-1")) == project_id:
                    project_node = tree
                    break
            if project_node is None:
                raise UnknownElement("project", project_id)
            context = [str(_attr(project_node, "name"))]

            class_node = next(
                (node for node in _children(project_node, "class") if int(_attr(node, "id", "-1")) == class_id),
                None,
            )
            if class_node is None:
                raise UnknownElement("class", class_id, context)
            context.append(str(_attr(class_node, "name")))

            command_node = next(
                (node for node in _children(class_node, "cmd") if int(_attr(node, "id", "-1")) == command_id),
                None,
            )
            if command_node is None:
                raise UnknownElement("command", command_id, context)

            return self._remember(project_node, class_node, command_node)

    def _remember(self, project_node: Element, class_node: Element, command_node: Element) -> CommandTemplate:
        template = build_template(project_node, class_node, command_node)
        existing = self._by_id.get(template.ids)
        if existing is not None:
            template = existing
        else:
            self._by_id[template.ids] = template
            if template.deprecated:
                logger.warning("%s has been deprecated", template.token)
        self._by_name[(template.project_name, template.class_name, template.command_name)] = template
        return template

    def new_command(
        self,
        project: str,
        class_name: str,
        command: str,
        initial_values: Optional[Mapping[str, Any]] = None,
    ) -> CommandInstance:
        """Build a default-valued command; unknown keys in ``initial_values`` are ignored."""
        return self.lookup_by_name(project, class_name, command).instantiate(initial_values)

    def decode_frame(self, payload: bytes) -> CommandInstance:
        """Decode ``[project][class][command u16][args...]`` into a command instance."""
        if len(payload) < FRAME_ID_HEADER_SIZE:
            raise FrameDecodeFailure(f"Command payload too short: {len(payload)} bytes", bytes(payload))

        project_id, class_id, command_id = payload[0], payload[1], payload[2]
        command = CommandInstance(self.lookup_by_id(project_id, class_id, command_id))
        command.load(payload, FRAME_ID_HEADER_SIZE)
        return command


def build_template(project_node: Element, class_node: Element, command_node: Element) -> CommandTemplate:
    arguments = []
    for arg in _children(command_node, "arg"):
        arg_type = str(_attr(arg, "type", ""))
        enum = None
        if arg_type == "enum":
            enum = tuple(str(_attr(option, "name")) for option in _children(arg, "enum"))
        arguments.append(
            ArgumentSpec(
                name=str(_attr(arg, "name")),
                type=arg_type,
                enum=enum,
                description=_text(arg),
            )
        )

    return CommandTemplate(
        project_id=int(_attr(project_node, "id", "0")),
        project_name=str(_attr(project_node, "name")),
        class_id=int(_attr(class_node, "id", "0")),
        class_name=str(_attr(class_node, "name")),
        command_id=int(_attr(command_node, "id", "0")),
        command_name=str(_attr(command_node, "name")),
        arguments=tuple(arguments),
        buffer_class=BufferClass.parse(_attr(command_node, "buffer", "DATA_WITH_ACK")),
        deprecated=_attr(command_node, "deprecated") == "true",
        timeout_action=str(_attr(command_node, "timeout", "POP")).upper(),
        description=_text(command_node),
    )
