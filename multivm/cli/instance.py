"""CLI commands for instance lifecycle."""

from __future__ import annotations

import sys
from pathlib import Path

import scriptconfig as scfg

from ..errors import MultiVMError
from ..image_vault import CurlDownloader, CustomImageHost
from ..models import NetworkInterface, Query, VirtualMachineDescription
from ..store import (
    InstanceRecord,
    StoreStatusMonitor,
    find_instance,
    load_store,
    remove_instance,
    save_store,
    upsert_instance,
)
from ..util import format_size, generate_mac, parse_size
from ._common import (
    _BaseCommand,
    _desc_from_record,
    _factory,
    _load_cfg,
    _parse_networks_arg,
    _store_path,
    log,
)


class LaunchCLI(_BaseCommand):
    """Create and start a new instance."""

    name = scfg.Value('', position=1, help='Instance name.')
    cpus = scfg.Value(1, help='Number of CPUs.')
    memory = scfg.Value('1G', help='Memory size, e.g. 2G.')
    disk = scfg.Value('5G', help='Disk size, e.g. 10G.')
    release = scfg.Value('', help='Image release or alias (default: local.image.default-release).')
    network = scfg.Value(
        '', help='Comma separated host networks for extra interfaces.'
    )
    bridged = scfg.Value(
        False, isflag=True, help='Add an interface on local.bridged-network.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        name = str(args.name or '').strip()
        if not name:
            raise MultiVMError('An instance name is required.')
        store_path = _store_path(args.store)
        reg = load_store(store_path)
        if find_instance(reg, name) is not None:
            print(f'Instance "{name}" already exists.', file=sys.stderr)
            return 2

        cfg = _load_cfg(args.config)
        net_ids = _parse_networks_arg(args.network)
        if args.bridged:
            if not cfg.network.bridged_network:
                raise MultiVMError('local.bridged-network is not set.')
            net_ids.append(cfg.network.bridged_network)

        factory = _factory(cfg)
        factory.hypervisor_health_check()
        vault = factory.create_image_vault(
            [CustomImageHost()],
            CurlDownloader(),
            Path(cfg.paths.cache_dir),
            Path(cfg.paths.data_dir),
            cfg.image.days_to_expire,
        )
        release = str(args.release or cfg.image.default_release)
        image = vault.fetch(Query(name=name, release=release))

        extra = [
            NetworkInterface(id=n, mac_address=generate_mac(), auto_mode=True)
            for n in net_ids
        ]
        factory.prepare_networking(extra)
        desc = VirtualMachineDescription(
            num_cores=int(args.cpus),
            mem_size=parse_size(args.memory),
            disk_space=parse_size(args.disk),
            vm_name=name,
            default_mac_address=generate_mac(),
            extra_interfaces=extra,
            image=image,
        )
        factory.prepare_instance_image(image, desc)

        upsert_instance(
            reg,
            InstanceRecord(
                name=name,
                backend=cfg.backend.driver,
                cpus=desc.num_cores,
                mem_size=desc.mem_size,
                disk_space=desc.disk_space,
                image=image.id,
                mac_address=desc.default_mac_address,
                extra_interfaces=list(desc.extra_interfaces),
            ),
        )
        save_store(reg, store_path)
        log.debug('Recorded instance {} in store', name)

        vm = factory.create_virtual_machine(desc, StoreStatusMonitor(store_path))
        vm.start()
        print(f'Launched: {name}')
        return 0


class _InstanceCommand(_BaseCommand):
    name = scfg.Value('', position=1, help='Instance name.')

    @classmethod
    def _handle(cls, args):
        store_path = _store_path(args.store)
        rec = find_instance(load_store(store_path), str(args.name))
        if rec is None:
            raise MultiVMError(f'No such instance: {args.name}')
        cfg = _load_cfg(args.config)
        cfg.backend.driver = rec.backend
        factory = _factory(cfg)
        vm = factory.create_virtual_machine(
            _desc_from_record(rec), StoreStatusMonitor(store_path)
        )
        return factory, vm, store_path


class StartCLI(_InstanceCommand):
    """Start an instance."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        _, vm, _ = cls._handle(args)
        vm.start()
        return 0


class StopCLI(_InstanceCommand):
    """Stop an instance."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        _, vm, _ = cls._handle(args)
        vm.shutdown()
        return 0


class DeleteCLI(_InstanceCommand):
    """Delete an instance and release its backend resources."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        factory, vm, store_path = cls._handle(args)
        vm.delete()
        factory.remove_resources_for(vm.vm_name)
        reg = load_store(store_path)
        remove_instance(reg, vm.vm_name)
        save_store(reg, store_path)
        print(f'Deleted: {vm.vm_name}')
        return 0


class ListCLI(_BaseCommand):
    """List managed instances as last recorded."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        reg = load_store(_store_path(args.store))
        if not reg.instances:
            print('No instances found.')
            return 0
        for rec in sorted(reg.instances, key=lambda r: r.name):
            nets = ','.join(n.id for n in rec.extra_interfaces) or '-'
            print(
                f'  - {rec.name} | backend={rec.backend} | state={rec.state} '
                f'| cpus={rec.cpus} | memory={format_size(rec.mem_size)} '
                f'| disk={format_size(rec.disk_space)} | networks={nets}'
            )
        return 0
