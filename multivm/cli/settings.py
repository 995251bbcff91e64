"""CLI commands for the settings registry."""

from __future__ import annotations

import scriptconfig as scfg

from ._common import _BaseCommand, _registry


class KeysCLI(_BaseCommand):
    """List known settings keys (templates are for display only)."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        for key in sorted(_registry(args).keys()):
            print(key)
        return 0


class GetCLI(_BaseCommand):
    """Print the value of a setting."""

    key = scfg.Value('', position=1, help='Settings key, e.g. local.driver.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        print(_registry(args).get(str(args.key)))
        return 0


class SetCLI(_BaseCommand):
    """Change the value of a setting."""

    key = scfg.Value('', position=1, help='Settings key, e.g. local.driver.')
    value = scfg.Value('', position=2, help='New value.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        _registry(args).set(str(args.key), str(args.value))
        return 0
