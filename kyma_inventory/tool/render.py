"""kyma-inventory render action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import cast

import aiofiles

from kyma_inventory.exceptions import InputException
from kyma_inventory.helm import HelmRenderer, load_values
from kyma_inventory.manifest import DEFAULT_NAMESPACE

_LOGGER = logging.getLogger(__name__)


class RenderAction:
    """kyma-inventory render action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "render",
                help="Render the helm chart of a component",
                description="""Renders the chart of a component with helm
                    template and prints the resulting manifest.""",
            ),
        )
        args.add_argument("chart_dir", type=pathlib.Path, help="Path to the chart")
        args.add_argument(
            "--name",
            type=str,
            default=None,
            help="Component name, defaults to the chart directory name",
        )
        args.add_argument(
            "--namespace",
            type=str,
            default=DEFAULT_NAMESPACE,
            help="Namespace the component is rendered into",
        )
        values = args.add_mutually_exclusive_group()
        values.add_argument(
            "--values", type=pathlib.Path, default=None, help="Values YAML file"
        )
        values.add_argument(
            "--profile",
            type=str,
            default=None,
            help="Name of a profile-<name>.yaml values file in the chart directory",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        chart_dir: pathlib.Path,
        name: str | None,
        namespace: str,
        values: pathlib.Path | None,
        profile: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        content = ""
        if profile:
            content = await load_values(profile, chart_dir)
        elif values:
            if not values.exists():
                raise InputException(f"Values file '{values}' does not exist")
            async with aiofiles.open(values) as f:
                content = await f.read()

        renderer = HelmRenderer(chart_dir, name or chart_dir.name, namespace)
        await renderer.prepare()
        _LOGGER.debug("Rendering %s into %s", chart_dir, namespace)
        sys.stdout.write(await renderer.render(content))
