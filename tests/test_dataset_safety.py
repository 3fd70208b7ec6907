"""
Dataset extraction and protection rules
"""
import pytest

from dataset_safety import (DatasetSafetyAnalyzer, destruction_order, extract_datasets,
                            is_protected, root_dataset)
from models import Zone

from conftest import HOST

BHYVE_CONFIG = {
    'zonepath': '/rpool/zones/vm01/path',
    'brand': 'bhyve',
    'bootdisk': {'path': 'rpool/zones/vm01/root'},
    'disk': [{'path': 'rpool/zones/vm01/data'}, 'rpool/zones/vm01/scratch'],
    'attr': [
        {'name': 'disk0', 'value': 'rpool/zones/vm01/legacy'},
        {'name': 'vnc', 'value': 'on'},
    ],
    'device': [{'match': '/dev/zvol/rdsk/rpool/zones/vm01/dev0'}, {'match': '/dev/null'}],
    'fs': [
        {'special': '/dev/zvol/dsk/rpool/zones/vm01/fs0', 'type': 'ufs'},
        {'special': 'tank/shared', 'type': 'zfs'},
        {'special': '/export/home', 'type': 'lofs'},
    ],
    'dataset': [{'name': 'tank/delegated'}],
}


class TestExtraction:
    def test_root_dataset(self):
        assert root_dataset('/rpool/zones/web01/path') == 'rpool/zones/web01'
        assert root_dataset('/zones') is None
        assert root_dataset(None) is None

    def test_every_source_in_first_seen_order(self):
        assert extract_datasets(BHYVE_CONFIG) == [
            'rpool/zones/vm01',
            'rpool/zones/vm01/root',
            'rpool/zones/vm01/data',
            'rpool/zones/vm01/scratch',
            'rpool/zones/vm01/legacy',
            'rpool/zones/vm01/dev0',
            'rpool/zones/vm01/fs0',
            'tank/shared',
            'tank/delegated',
        ]

    def test_duplicates_and_blanks_removed(self):
        config = {'zonepath': '/rpool/zones/web01/path',
                  'bootdisk': 'rpool/zones/web01',
                  'disk': {'path': '  '},
                  'dataset': ['tank/a', 'tank/a']}
        assert extract_datasets(config) == ['rpool/zones/web01', 'tank/a']

    def test_deterministic(self):
        assert extract_datasets(BHYVE_CONFIG) == extract_datasets(dict(BHYVE_CONFIG))

    def test_empty_config(self):
        assert extract_datasets(None) == []
        assert extract_datasets({}) == []


class TestProtection:
    def test_exact_and_ancestor_match(self):
        assert is_protected('rpool/shared/data', {'rpool/shared/data'})
        assert is_protected('rpool/zones/web01', {'rpool/zones/web01/disk0'})

    def test_similar_prefix_is_not_an_ancestor(self):
        assert not is_protected('pool/zone1', {'pool/zone10'})
        assert not is_protected('pool/zone1', {'pool/zone10/disk0'})

    def test_descendant_of_protected_is_not_protected(self):
        assert not is_protected('rpool/shared/data/web01', {'rpool/shared/data'})

    def test_parents_destroyed_first(self):
        assert destruction_order(['rpool/a/b', 'rpool/a', 'rpool/c', 'rpool/a']) == \
            ['rpool/a', 'rpool/c', 'rpool/a/b']


class TestAnalyzer:
    @pytest.mark.asyncio
    async def test_verify_existing_drops_missing(self, executor, store):
        executor.fail('zfs', 'list', '-H', '-o', 'name', 'rpool/gone', stderr='dataset does not exist')
        analyzer = DatasetSafetyAnalyzer(executor, store, HOST)
        assert await analyzer.verify_existing(['rpool/a', 'rpool/gone', 'rpool/b']) == ['rpool/a', 'rpool/b']

    @pytest.mark.asyncio
    async def test_protected_from_live_and_stored_zones(self, executor, store):
        executor.all_zone_configs({
            'web01': {'zonepath': '/rpool/zones/web01/path'},
            'web02': {'zonepath': '/rpool/zones/web02/path', 'disk': ['rpool/shared/data']},
        })
        await store.create_zone(Zone(name='db01', host=HOST,
                                     configuration={'zonepath': '/tank/zones/db01/path'}))
        await store.create_zone(Zone(name='old01', host=HOST, is_orphaned=True,
                                     configuration={'zonepath': '/tank/zones/old01/path'}))
        await store.create_zone(Zone(name='far01', host='otherhost',
                                     configuration={'zonepath': '/tank/zones/far01/path'}))

        analyzer = DatasetSafetyAnalyzer(executor, store, HOST)
        protected = await analyzer.protected_datasets('web01')
        assert protected == {'rpool/zones/web02', 'rpool/shared/data', 'tank/zones/db01'}

    @pytest.mark.asyncio
    async def test_protected_falls_back_to_store(self, executor, store):
        executor.all_zone_configs({}, returncode=1)
        await store.create_zone(Zone(name='web02', host=HOST,
                                     configuration={'zonepath': '/rpool/zones/web02/path'}))
        analyzer = DatasetSafetyAnalyzer(executor, store, HOST)
        assert await analyzer.protected_datasets('web01') == {'rpool/zones/web02'}

    @pytest.mark.asyncio
    async def test_destroy_report(self, executor, store):
        executor.fail('zfs', 'destroy', '-r', 'tank/broken', stderr='dataset is busy')
        analyzer = DatasetSafetyAnalyzer(executor, store, HOST)
        report = await analyzer.destroy(
            ['rpool/zones/web01/disk0', 'rpool/zones/web01', 'rpool/shared', 'tank/broken'],
            protected={'rpool/shared/data'})

        assert report.destroyed == ['rpool/zones/web01']
        assert report.covered == ['rpool/zones/web01/disk0']
        assert report.protected == ['rpool/shared']
        assert report.errors == ['Failed to destroy tank/broken: dataset is busy']
        assert ['zfs', 'destroy', '-r', 'rpool/zones/web01/disk0'] not in executor.calls
