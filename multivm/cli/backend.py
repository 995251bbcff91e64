"""CLI commands that talk to the backend as a whole."""

from __future__ import annotations

from pathlib import Path

from ..image_vault import CurlDownloader, CustomImageHost
from ._common import _BaseCommand, _factory, _load_cfg


class DoctorCLI(_BaseCommand):
    """Reconcile the backend environment and report its version."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        factory = _factory(cfg)
        factory.hypervisor_health_check()
        print(f'✅ Backend ready: {factory.get_backend_version_string()}')
        return 0


class VersionCLI(_BaseCommand):
    """Print the backend version string."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        print(_factory(_load_cfg(args.config)).get_backend_version_string())
        return 0


class NetworksCLI(_BaseCommand):
    """List host networks usable for extra instance interfaces."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        nets = _factory(_load_cfg(args.config)).networks()
        if not nets:
            print('No usable networks found.')
            return 0
        width = max(len(n.id) for n in nets)
        for net in nets:
            print(f'{net.id:<{width}}  {net.type:<8}  {net.description}')
        return 0


class PruneCLI(_BaseCommand):
    """Evict cached images unused for longer than the expiry horizon."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        vault = _factory(cfg).create_image_vault(
            [CustomImageHost()],
            CurlDownloader(),
            Path(cfg.paths.cache_dir),
            Path(cfg.paths.data_dir),
            cfg.image.days_to_expire,
        )
        pruned = vault.prune_expired()
        print(f'Pruned {len(pruned)} image(s).')
        return 0
