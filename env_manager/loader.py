# /*
# Copyright 2026 The env-manager Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Desired-state loader: environment files and Kubernetes manifests."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from env_manager import logger
from env_manager.constants import (
    DEFAULT_READINESS_TIMEOUT_SECONDS,
    DEFAULT_SYSTEM_WAITS,
    DEFAULT_WEBV_COMMAND,
    DEFAULT_WEBV_SLEEP_MS,
)
from env_manager.errors import InvalidEnvironment
from env_manager.models import (
    Environment,
    ImageSpec,
    LoadTestSpec,
    ReadinessCheck,
    ResourceId,
    ResourceSpec,
    SmokeTarget,
)

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


# ============================================================================
# File schema
# ============================================================================

class WaitModel(BaseModel):
    """A readiness wait as written in the environment file."""

    model_config = ConfigDict(extra="forbid")

    condition: str = "Ready"
    kind: str | None = None
    name: str | None = None
    namespace: str | None = None
    selector: str | None = None
    timeout: float = Field(default=DEFAULT_READINESS_TIMEOUT_SECONDS, gt=0)

    def to_check(self) -> ReadinessCheck:
        return ReadinessCheck(
            condition=self.condition,
            selector=self.selector,
            kind=self.kind,
            namespace=self.namespace,
            name=self.name,
            timeout=self.timeout,
        )


class ResourceEntry(BaseModel):
    """Inline resource with its own dependencies and wait."""

    model_config = ConfigDict(extra="forbid")

    manifest: dict[str, Any]
    depends_on: list[str] = Field(default_factory=list)
    wait: WaitModel | None = None


class GroupModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    manifests: list[str] = Field(default_factory=list)
    resources: list[dict[str, Any]] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)
    wait: WaitModel | None = None


class CheckModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = Field(pattern=r"^https?://")
    expect: int | list[int] = 200
    contains: str | None = None
    name: str | None = None

    def to_target(self) -> SmokeTarget:
        expect = (self.expect,) if isinstance(self.expect, int) else tuple(self.expect)
        return SmokeTarget(url=self.url, expect=expect, contains=self.contains, name=self.name)


class ImageModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    tag: str
    context: str
    dockerfile: str | None = None


class LoadTestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    server: str = Field(pattern=r"^https?://")
    files: list[str] = Field(min_length=1)
    command: str = DEFAULT_WEBV_COMMAND
    sleep: int = Field(default=DEFAULT_WEBV_SLEEP_MS, ge=0)

    def to_spec(self, base_dir: Path) -> LoadTestSpec:
        return LoadTestSpec(
            server=self.server,
            files=tuple((base_dir / f).resolve() for f in self.files),
            command=self.command,
            sleep=self.sleep,
        )


class EnvironmentFile(BaseModel):
    """Top-level schema of an environment file."""

    model_config = ConfigDict(extra="forbid")

    # Used as a label value, so it must be a valid one.
    name: str = Field(pattern=r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$")
    cluster: dict[str, Any] = Field(default_factory=dict)
    images: list[ImageModel] = Field(default_factory=list)
    groups: list[GroupModel] = Field(default_factory=list)
    waits: list[WaitModel] = Field(default_factory=list)
    system_waits: list[WaitModel] | None = None
    checks: list[CheckModel] = Field(default_factory=list)
    loadtest: LoadTestModel | None = None


# ============================================================================
# Manifest loading
# ============================================================================

def _manifest_files(path: Path) -> list[Path]:
    if path.is_dir():
        return sorted(p for p in path.iterdir() if p.suffix in MANIFEST_SUFFIXES and p.is_file())
    if path.is_file():
        return [path]
    raise InvalidEnvironment(f"Manifest path {path} does not exist")


def load_manifests(path: Path) -> list[dict[str, Any]]:
    """Load every document from a manifest file or directory.

    Directories are read non-recursively in name order, like ``kubectl
    apply -f``. ``List`` documents are expanded into their items.

    Raises:
        InvalidEnvironment: If the path is missing, a file is not valid YAML,
            or a document or List item is not a mapping.
    """
    documents: list[dict[str, Any]] = []
    for file in _manifest_files(path):
        try:
            loaded = list(yaml.safe_load_all(file.read_text()))
        except yaml.YAMLError as err:
            raise InvalidEnvironment(f"Invalid YAML in {file}: {err}") from err
        for doc in loaded:
            if doc is None:
                continue
            if not isinstance(doc, dict):
                raise InvalidEnvironment(f"{file} contains a document that is not a mapping")
            if doc.get("kind") == "List":
                items = doc.get("items") or []
                if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
                    raise InvalidEnvironment(f"{file} contains a List item that is not a mapping")
                documents.extend(items)
            else:
                documents.append(doc)
    return documents


# ============================================================================
# Spec construction
# ============================================================================

@dataclass
class _Entry:
    id: ResourceId
    payload: dict[str, Any]
    group: str
    explicit: list[ResourceId] = field(default_factory=list)
    readiness: ReadinessCheck | None = None


def _parse_ref(text: str, owner: str) -> ResourceId:
    try:
        return ResourceId.parse(text)
    except ValueError as err:
        raise InvalidEnvironment(f"{owner}: {err}") from err


def _identity(doc: dict[str, Any], owner: str) -> ResourceId:
    try:
        return ResourceId.from_manifest(doc)
    except ValueError as err:
        raise InvalidEnvironment(f"{owner}: {err}") from err


def _group_entries(group: GroupModel, base_dir: Path) -> list[_Entry]:
    entries: list[_Entry] = []
    for manifest in group.manifests:
        for doc in load_manifests(base_dir / manifest):
            entries.append(_Entry(_identity(doc, f"group '{group.name}'"), doc, group.name))
    for raw in group.resources:
        if "manifest" in raw:
            try:
                item = ResourceEntry.model_validate(raw)
            except ValidationError as err:
                raise InvalidEnvironment(f"group '{group.name}': {err}") from err
            rid = _identity(item.manifest, f"group '{group.name}'")
            entries.append(_Entry(
                rid,
                item.manifest,
                group.name,
                explicit=[_parse_ref(ref, str(rid)) for ref in item.depends_on],
                readiness=item.wait.to_check() if item.wait else None,
            ))
        else:
            entries.append(_Entry(_identity(raw, f"group '{group.name}'"), raw, group.name))
    return entries


def _build_specs(groups: list[GroupModel], base_dir: Path) -> tuple[ResourceSpec, ...]:
    entries: dict[ResourceId, _Entry] = {}
    members: dict[str, list[ResourceId]] = {}
    for group in groups:
        if group.name in members:
            raise InvalidEnvironment(f"Group '{group.name}' is declared more than once")
        members[group.name] = []
        for entry in _group_entries(group, base_dir):
            if entry.id in entries:
                raise InvalidEnvironment(f"Resource {entry.id} is declared more than once")
            entries[entry.id] = entry
            members[group.name].append(entry.id)

    group_deps: dict[str, list[ResourceId]] = {}
    intra: dict[ResourceId, list[ResourceId]] = {}
    for group in groups:
        deps: list[ResourceId] = []
        for dep_group in group.depends_on:
            if dep_group not in members:
                raise InvalidEnvironment(f"Group '{group.name}' depends on unknown group '{dep_group}'")
            deps.extend(members[dep_group])
        group_deps[group.name] = deps

        if group.wait is not None:
            if not members[group.name]:
                raise InvalidEnvironment(f"Group '{group.name}' declares a wait but has no resources")
            # The group wait sits on the last member, which follows the rest of the group.
            last = members[group.name][-1]
            if entries[last].readiness is not None:
                raise InvalidEnvironment(f"{last} has both a resource wait and a group wait")
            entries[last].readiness = group.wait.to_check()
            intra[last] = members[group.name][:-1]

    specs: list[ResourceSpec] = []
    for rid, entry in entries.items():
        spec_deps: list[ResourceId] = []
        namespace = ResourceId("Namespace", "", rid.namespace)
        if rid.namespace and namespace in entries and namespace != rid:
            spec_deps.append(namespace)
        spec_deps.extend(group_deps[entry.group])
        spec_deps.extend(intra.get(rid, ()))
        spec_deps.extend(entry.explicit)
        specs.append(ResourceSpec(
            id=rid,
            payload=entry.payload,
            depends_on=tuple(dict.fromkeys(dep for dep in spec_deps if dep != rid)),
            readiness=entry.readiness,
        ))
    return tuple(specs)


def parse_environment(doc: Any, base_dir: Path, source: Path | None = None) -> Environment:
    """Turn a parsed environment document into an Environment.

    Args:
        doc: The YAML document.
        base_dir: Directory manifest and image paths are relative to.
        source: File the document came from, if any.

    Raises:
        InvalidEnvironment: If the document fails validation.
    """
    if not isinstance(doc, dict):
        raise InvalidEnvironment("Environment file must contain a mapping")
    try:
        model = EnvironmentFile.model_validate(doc)
    except ValidationError as err:
        raise InvalidEnvironment(f"Invalid environment file: {err}") from err

    cluster = dict(model.cluster)
    if cluster.get("config"):
        cluster["config"] = str((base_dir / str(cluster["config"])).resolve())

    if model.system_waits is None:
        system_waits = tuple(WaitModel.model_validate(w).to_check() for w in DEFAULT_SYSTEM_WAITS)
    else:
        system_waits = tuple(w.to_check() for w in model.system_waits)

    environment = Environment(
        name=model.name,
        specs=_build_specs(model.groups, base_dir),
        waits=tuple(w.to_check() for w in model.waits),
        system_waits=system_waits,
        checks=tuple(c.to_target() for c in model.checks),
        images=tuple(
            ImageSpec(name=i.name, tag=i.tag, context=(base_dir / i.context).resolve(), dockerfile=i.dockerfile)
            for i in model.images
        ),
        loadtest=model.loadtest.to_spec(base_dir) if model.loadtest else None,
        cluster=cluster,
        source=source,
    )
    logger.info("Loaded environment '%s' with %d resources", environment.name, len(environment.specs))
    return environment


def load_environment(path: Path) -> Environment:
    """Load an environment file.

    Raises:
        InvalidEnvironment: If the file is missing, unreadable or invalid.
    """
    if not path.is_file():
        raise InvalidEnvironment(f"Environment file {path} not found")
    try:
        doc = yaml.safe_load(path.read_text())
    except yaml.YAMLError as err:
        raise InvalidEnvironment(f"Invalid YAML in {path}: {err}") from err
    return parse_environment(doc, base_dir=path.resolve().parent, source=path)
