"""Library for rendering the helm chart of a component into a manifest.

A renderer is prepared once for a chart and may then render the chart with
any number of values documents:

```python
from pathlib import Path
from kyma_inventory.helm import HelmRenderer, load_values

renderer = HelmRenderer(Path("charts/istio"), "istio", "istio-system")
await renderer.prepare()
values = await load_values("evaluation", Path("charts/istio"))
manifest = await renderer.render(values)
```

The manifest is deterministic for a chart and values document: rendered
files are ordered by their path in the chart, notes files (`.txt`) are
dropped, and the chart's CRD files follow ordered by path. Every document is
stripped and terminated with a `---` separator.

The output is produced by `helm template --output-dir`, so each rendered file
starts with a `---` line and a `# Source: <chart>/templates/<file>` comment,
and templates that render to nothing are not written at all. The manifest is
still deterministic, but it is not byte for byte what rendering the chart
through the helm engine in process would return.
"""

from abc import ABC, abstractmethod
import logging
import os
from pathlib import Path
import tempfile

import aiofiles
from aiofiles.ospath import exists, isdir
import yaml

from . import command
from .exceptions import HelmException, InputException

__all__ = [
    "TemplateRenderer",
    "HelmRenderer",
    "assemble_manifest",
    "load_values",
]

_LOGGER = logging.getLogger(__name__)


HELM_BIN = "helm"
YAML_SEPARATOR = "\n---\n"
# See https://helm.sh/docs/chart_template_guide/notes_files/
NOTES_FILE_SUFFIX = ".txt"
CHART_FILE = "Chart.yaml"
CRDS_DIR = "crds"
CRD_SUFFIXES = (".yaml", ".yml", ".json")


class TemplateRenderer(ABC):
    """Renders the chart of a component with a values document."""

    @abstractmethod
    async def prepare(self) -> None:
        """Load the chart, must be called before rendering."""

    @abstractmethod
    async def render(self, values: str) -> str:
        """Render the chart with the YAML values and return the manifest."""


def _document(content: str) -> str:
    """Strip a rendered file and terminate it with a separator."""
    doc = content.strip() + "\n"
    if not doc.endswith(YAML_SEPARATOR):
        doc += YAML_SEPARATOR
    return doc


def assemble_manifest(files: dict[str, str], crds: dict[str, str]) -> str:
    """Concatenate rendered files and CRD files into a single manifest.

    Args:
        files: Rendered template output keyed by path within the chart
        crds: CRD file contents keyed by path within the chart
    """
    names = sorted(name for name in files if not name.endswith(NOTES_FILE_SUFFIX))
    docs = [_document(files[name]) for name in names]
    docs.extend(_document(crds[name]) for name in sorted(crds))
    return "".join(docs)


async def _read_tree(root: Path) -> dict[str, str]:
    """Read every file below root keyed by its posix path relative to root."""
    contents: dict[str, str] = {}
    for dirpath, _, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            async with aiofiles.open(path) as f:
                contents[path.relative_to(root).as_posix()] = await f.read()
    return contents


class HelmRenderer(TemplateRenderer):
    """Renders a local chart directory with `helm template`."""

    def __init__(
        self,
        chart_dir: Path,
        component_name: str,
        namespace: str,
        helm_bin: str = HELM_BIN,
    ) -> None:
        """Initialize HelmRenderer."""
        self._chart_dir = chart_dir
        self._component_name = component_name
        self._namespace = namespace
        self._helm_bin = helm_bin
        self._chart_name: str | None = None
        self._crds: dict[str, str] = {}

    @property
    def prepared(self) -> bool:
        return self._chart_name is not None

    async def prepare(self) -> None:
        """Load the chart metadata and the CRD files of the chart."""
        if not await isdir(self._chart_dir):
            raise HelmException(f"component {self._component_name!r} does not exist")
        chart_file = self._chart_dir / CHART_FILE
        if not await exists(chart_file):
            raise HelmException(
                f"component {self._component_name!r} chart is missing {CHART_FILE}"
            )
        async with aiofiles.open(chart_file) as f:
            try:
                chart = yaml.safe_load(await f.read())
            except yaml.YAMLError as err:
                raise HelmException(f"Unable to parse {chart_file}: {err}") from err
        if not isinstance(chart, dict) or not (name := chart.get("name")):
            raise HelmException(f"Invalid chart {chart_file}: missing name")

        crds: dict[str, str] = {}
        for dirpath, _, filenames in os.walk(self._chart_dir):
            directory = Path(dirpath)
            if directory.name != CRDS_DIR:
                continue
            for filename in filenames:
                if not filename.endswith(CRD_SUFFIXES):
                    continue
                path = directory / filename
                async with aiofiles.open(path) as f:
                    crds[f"{name}/{path.relative_to(self._chart_dir).as_posix()}"] = (
                        await f.read()
                    )
        self._chart_name = name
        self._crds = crds
        _LOGGER.debug(
            "Loaded chart %s for %s with %d CRDs",
            name,
            self._component_name,
            len(crds),
        )

    async def render(self, values: str) -> str:
        """Render the chart with the YAML values and return the manifest."""
        if not self.prepared:
            raise HelmException(
                f"Renderer for {self._component_name} not prepared before rendering"
            )
        try:
            parsed = yaml.safe_load(values) if values else None
        except yaml.YAMLError as err:
            raise InputException(f"Failed to parse values: {err}") from err
        if parsed is not None and not isinstance(parsed, dict):
            raise InputException(f"Values must be a mapping, got: {values!r}")

        with tempfile.TemporaryDirectory() as tmp_dir:
            values_file = Path(tmp_dir) / "values.yaml"
            async with aiofiles.open(values_file, mode="w") as f:
                await f.write(values or "")
            output_dir = Path(tmp_dir) / "output"
            await command.run(
                command.Command(
                    [
                        self._helm_bin,
                        "template",
                        self._component_name,
                        str(self._chart_dir),
                        "--namespace",
                        self._namespace,
                        "--values",
                        str(values_file),
                        "--skip-crds",
                        "--output-dir",
                        str(output_dir),
                    ],
                    exc=HelmException,
                )
            )
            # helm writes files below a directory named after the chart
            files = await _read_tree(output_dir) if await isdir(output_dir) else {}
        return assemble_manifest(files, self._crds)


def _profile_filename(name: str) -> str:
    return f"profile-{name}.yaml"


async def load_values(profile: str, charts_dir: Path) -> str:
    """Return the values document of a named profile of a chart."""
    path = charts_dir / _profile_filename(profile)
    if not await exists(path):
        raise InputException(f"Profile {profile!r} not found: {path}")
    async with aiofiles.open(path) as f:
        return await f.read()
