from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from media_service.core.errors import (
    AlreadyExistsError,
    ConflictError,
    ExternalServiceError,
    InvalidArgumentError,
    NotFoundError,
)
from media_service.models.asset import AssetStatus, MediaAsset
from media_service.schemas.metadata import AssetMetadata, Owner
from media_service.services.assets import AssetService, AuditTrailOptions, metadata_key
from media_service.services.pagination import PageRequest

ADMIN_ID = UUID("00000000-0000-4000-8000-000000000001")
PRODUCT = Owner(owner_id="p1", owner_type="product")
COLLECTION = Owner(owner_id="c1", owner_type="collection")


def _audit(note: str = "routine maintenance by the media team") -> AuditTrailOptions:
    return AuditTrailOptions(actor_id=ADMIN_ID, actor_name="Ada Admin", note=note)


async def _seed(
    service: AssetService,
    session_factory,
    *,
    status: AssetStatus = AssetStatus.active,
    owners: tuple[Owner, ...] = (),
) -> UUID:
    async with session_factory() as session:
        view, _ = await service.begin_upload(
            session,
            title="Launch video",
            creator_id="creator-1",
            audit=AuditTrailOptions(actor_id=ADMIN_ID, actor_name="Ada Admin"),
        )
        asset_id = view.asset.id
        if status != AssetStatus.upload_url_generated:
            view.asset.status = status
            await session.commit()
    if owners:

        def _set(document):
            document.owners = list(owners)
            return document

        await service.metadata_store.update(metadata_key(asset_id), _set)
    return asset_id


async def _status(session_factory, asset_id: UUID) -> AssetStatus:
    async with session_factory() as session:
        asset = await session.get(MediaAsset, asset_id)
        return asset.status


@pytest.mark.anyio
async def test_begin_upload_creates_row_document_and_notifies_initial_owner(
    asset_service, session_factory, owner_client, platform
) -> None:
    async with session_factory() as session:
        view, credential = await asset_service.begin_upload(
            session,
            title="  Launch video ",
            creator_id="creator-1",
            audit=AuditTrailOptions(actor_id=ADMIN_ID, actor_name="Ada Admin"),
            owner=PRODUCT,
        )

    assert view.asset.status == AssetStatus.upload_url_generated
    assert view.asset.public_id == f"media/{view.asset.id}"
    assert credential.external_upload_id == view.asset.external_upload_id
    assert credential.signature == platform.sign(credential.params)
    document = await asset_service.metadata_store.get(metadata_key(view.asset.id))
    assert document.title == "Launch video"
    assert document.owners == [PRODUCT]
    assert owner_client.calls == [("add", view.asset.id, "product", ("p1",))]


@pytest.mark.anyio
async def test_begin_upload_validates_before_writing(asset_service, session_factory, owner_client) -> None:
    async with session_factory() as session:
        with pytest.raises(InvalidArgumentError):
            await asset_service.begin_upload(
                session, title="", creator_id="creator-1", audit=AuditTrailOptions(actor_id=ADMIN_ID, actor_name="Ada")
            )
        with pytest.raises(InvalidArgumentError):
            await asset_service.begin_upload(
                session,
                title="Clip",
                creator_id="creator-1",
                audit=AuditTrailOptions(actor_id=ADMIN_ID, actor_name="Ada"),
                owner=Owner(owner_id="x", owner_type="unknown"),
            )

    assert await asset_service.metadata_store.keys() == []
    assert owner_client.calls == []


@pytest.mark.anyio
async def test_begin_upload_with_taken_public_id_is_already_exists(asset_service, session_factory) -> None:
    audit = AuditTrailOptions(actor_id=ADMIN_ID, actor_name="Ada Admin")
    async with session_factory() as session:
        await asset_service.begin_upload(session, title="One", creator_id="c", audit=audit, public_id="intro")
    async with session_factory() as session:
        with pytest.raises(AlreadyExistsError):
            await asset_service.begin_upload(session, title="Two", creator_id="c", audit=audit, public_id="intro")


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("operation", "status"),
    [
        ("archive", AssetStatus.archived),
        ("archive", AssetStatus.upload_url_generated),
        ("mark_as_broken", AssetStatus.broken),
        ("mark_as_broken", AssetStatus.archived),
        ("restore", AssetStatus.active),
        ("restore", AssetStatus.broken),
        ("permanent_delete", AssetStatus.active),
        ("permanent_delete", AssetStatus.broken),
    ],
)
async def test_illegal_transitions_conflict_and_leave_state_alone(
    asset_service, session_factory, owner_client, platform, operation: str, status: AssetStatus
) -> None:
    asset_id = await _seed(asset_service, session_factory, status=status)

    async with session_factory() as session:
        with pytest.raises(ConflictError):
            await getattr(asset_service, operation)(session, asset_id, _audit())

    assert await _status(session_factory, asset_id) == status
    assert owner_client.calls == []
    assert platform.deleted == []


@pytest.mark.anyio
async def test_archive_with_owners_is_rejected_without_side_effects(
    asset_service, session_factory, owner_client
) -> None:
    asset_id = await _seed(asset_service, session_factory, owners=(PRODUCT,))

    async with session_factory() as session:
        with pytest.raises(ConflictError):
            await asset_service.archive(session, asset_id, _audit())

    assert await _status(session_factory, asset_id) == AssetStatus.active
    document = await asset_service.metadata_store.get(metadata_key(asset_id))
    assert document.owners == [PRODUCT]
    assert owner_client.calls == []


@pytest.mark.anyio
async def test_archive_requires_actor_and_note(asset_service, session_factory) -> None:
    asset_id = await _seed(asset_service, session_factory)

    async with session_factory() as session:
        with pytest.raises(InvalidArgumentError):
            await asset_service.archive(session, asset_id, AuditTrailOptions(actor_name="Ada Admin", note="too short"))
        with pytest.raises(InvalidArgumentError):
            await asset_service.archive(
                session, asset_id, AuditTrailOptions(actor_name="Ada Admin", note="long enough note here")
            )

    assert await _status(session_factory, asset_id) == AssetStatus.active


@pytest.mark.anyio
async def test_archive_then_restore(asset_service, session_factory, owner_client) -> None:
    asset_id = await _seed(asset_service, session_factory)

    async with session_factory() as session:
        archived = await asset_service.archive(session, asset_id, _audit(), reason="superseded by new cut")
    assert archived.asset.status == AssetStatus.archived
    assert archived.asset.deleted_at is not None
    assert archived.asset.archived_by == ADMIN_ID
    assert archived.asset.archive_reason == "superseded by new cut"
    assert owner_client.calls == [("force_delete", (asset_id,), None, ())]

    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await asset_service.get(session, asset_id)
        assert (await asset_service.get_with_archived(session, asset_id)).asset.id == asset_id

    async with session_factory() as session:
        restored = await asset_service.restore(session, asset_id, _audit("restored after customer request"))
    assert restored.asset.status == AssetStatus.active
    assert restored.asset.deleted_at is None
    assert restored.asset.restored_by_name == "Ada Admin"
    assert restored.asset.note == "restored after customer request"


@pytest.mark.anyio
async def test_mark_as_broken_releases_owners_per_type(asset_service, session_factory, owner_client) -> None:
    extra = Owner(owner_id="p2", owner_type="product")
    asset_id = await _seed(asset_service, session_factory, owners=(PRODUCT, extra, COLLECTION))

    async with session_factory() as session:
        view = await asset_service.mark_as_broken(session, asset_id, _audit("playback fails on every device"))

    assert view.asset.status == AssetStatus.broken
    assert view.metadata.owners == []
    assert sorted(owner_client.calls, key=lambda call: call[2]) == [
        ("delete_batch", asset_id, "collection", ("c1",)),
        ("delete_batch", asset_id, "product", ("p1", "p2")),
    ]


@pytest.mark.anyio
async def test_mark_as_broken_without_owners_makes_no_remote_call(asset_service, session_factory, owner_client) -> None:
    asset_id = await _seed(asset_service, session_factory)

    async with session_factory() as session:
        await asset_service.mark_as_broken(session, asset_id, _audit("playback fails on every device"))

    assert owner_client.calls == []


@pytest.mark.anyio
async def test_partial_release_keeps_failed_owner_type_for_resync(
    asset_service, session_factory, owner_client
) -> None:
    asset_id = await _seed(asset_service, session_factory, owners=(PRODUCT, COLLECTION))
    owner_client.fail_types = {"collection"}

    async with session_factory() as session:
        with pytest.raises(ExternalServiceError) as exc_info:
            await asset_service.mark_as_broken(session, asset_id, _audit("playback fails on every device"))

    assert exc_info.value.failures
    assert await _status(session_factory, asset_id) == AssetStatus.broken
    document = await asset_service.metadata_store.get(metadata_key(asset_id))
    assert document.owners == [COLLECTION]

    owner_client.fail_types = set()
    async with session_factory() as session:
        await asset_service.resync_owners(session, asset_id)

    assert (await asset_service.metadata_store.get(metadata_key(asset_id))).owners == []
    assert owner_client.calls[-1] == ("delete_batch", asset_id, "collection", ("c1",))


@pytest.mark.anyio
async def test_permanent_delete_runs_saga(asset_service, session_factory, platform) -> None:
    asset_id = await _seed(asset_service, session_factory, status=AssetStatus.archived)

    async with session_factory() as session:
        completed = await asset_service.permanent_delete(session, asset_id, _audit())

    assert completed == ["delete_canonical_row", "delete_remote_asset", "purge_metadata"]
    assert platform.deleted == [(f"media/{asset_id}", "video")]
    assert await asset_service.metadata_store.get(metadata_key(asset_id)) is None
    async with session_factory() as session:
        assert await session.get(MediaAsset, asset_id) is None


@pytest.mark.anyio
async def test_permanent_delete_remote_failure_keeps_row_deleted(asset_service, session_factory, platform) -> None:
    asset_id = await _seed(asset_service, session_factory, status=AssetStatus.archived)
    platform.fail_delete = True

    async with session_factory() as session:
        with pytest.raises(ExternalServiceError) as exc_info:
            await asset_service.permanent_delete(session, asset_id, _audit())

    assert exc_info.value.context["completed_steps"] == ["delete_canonical_row"]
    assert exc_info.value.context["pending_steps"] == ["delete_remote_asset", "purge_metadata"]
    async with session_factory() as session:
        assert await session.get(MediaAsset, asset_id) is None
    assert await asset_service.metadata_store.get(metadata_key(asset_id)) is not None

    async with session_factory() as session:
        assert await asset_service.purge_orphan_metadata(session, grace_seconds=0) == [metadata_key(asset_id)]
    assert await asset_service.metadata_store.keys() == []


@pytest.mark.anyio
async def test_add_and_remove_owner(asset_service, session_factory, owner_client) -> None:
    asset_id = await _seed(asset_service, session_factory)

    async with session_factory() as session:
        view = await asset_service.add_owner(session, asset_id, PRODUCT)
    assert view.metadata.owners == [PRODUCT]
    assert view.metadata.version == 1

    async with session_factory() as session:
        with pytest.raises(AlreadyExistsError):
            await asset_service.add_owner(session, asset_id, PRODUCT)
        with pytest.raises(NotFoundError):
            await asset_service.remove_owner(session, asset_id, COLLECTION)
        with pytest.raises(InvalidArgumentError):
            await asset_service.add_owner(session, asset_id, Owner(owner_id="x", owner_type="unknown"))

    async with session_factory() as session:
        view = await asset_service.remove_owner(session, asset_id, PRODUCT)
    assert view.metadata.owners == []
    assert owner_client.calls == [
        ("add", asset_id, "product", ("p1",)),
        ("delete", asset_id, "product", ("p1",)),
    ]


@pytest.mark.anyio
@pytest.mark.parametrize("status", [AssetStatus.archived, AssetStatus.broken])
async def test_owner_changes_are_locked_on_archived_and_broken(
    asset_service, session_factory, owner_client, status: AssetStatus
) -> None:
    asset_id = await _seed(asset_service, session_factory, status=status)

    async with session_factory() as session:
        with pytest.raises(ConflictError):
            await asset_service.add_owner(session, asset_id, PRODUCT)
        with pytest.raises(ConflictError):
            await asset_service.update_owners(session, asset_id, [PRODUCT])

    assert owner_client.calls == []


@pytest.mark.anyio
async def test_update_owners_notifies_only_the_difference(asset_service, session_factory, owner_client) -> None:
    keep = Owner(owner_id="p2", owner_type="product")
    asset_id = await _seed(asset_service, session_factory, owners=(PRODUCT, keep))
    new_product = Owner(owner_id="p3", owner_type="product")

    async with session_factory() as session:
        view, diff = await asset_service.update_owners(session, asset_id, [keep, new_product, COLLECTION, COLLECTION])

    assert diff.to_add == {"product": {"p3"}, "collection": {"c1"}}
    assert diff.to_delete == {"product": {"p1"}}
    assert set(view.metadata.owners) == {keep, new_product, COLLECTION}
    assert len(view.metadata.owners) == 3
    assert sorted(owner_client.calls, key=lambda call: (call[2], call[0])) == [
        ("add_batch", asset_id, "collection", ("c1",)),
        ("add_batch", asset_id, "product", ("p3",)),
        ("delete_batch", asset_id, "product", ("p1",)),
    ]


@pytest.mark.anyio
async def test_resync_reissues_additions_for_active_asset(asset_service, session_factory, owner_client) -> None:
    asset_id = await _seed(asset_service, session_factory, owners=(PRODUCT, COLLECTION))

    async with session_factory() as session:
        results = await asset_service.resync_owners(session, asset_id)

    assert results == {"collection": {"add": 1}, "product": {"add": 1}}
    assert owner_client.count("add_batch") == 2


@pytest.mark.anyio
async def test_listing_scopes_and_unowned(asset_service, session_factory) -> None:
    owned = await _seed(asset_service, session_factory, owners=(PRODUCT,))
    unowned = await _seed(asset_service, session_factory)
    broken = await _seed(asset_service, session_factory, status=AssetStatus.broken)
    pending = await _seed(asset_service, session_factory, status=AssetStatus.upload_url_generated)

    async with session_factory() as session:
        active, token = await asset_service.list_assets(session, PageRequest())
        broken_views, _ = await asset_service.list_broken(session, PageRequest())
        unowned_ids = []
        page = PageRequest(page_size=1)
        while True:
            views, page.page_token = await asset_service.list_unowned(session, page)
            unowned_ids.extend(view.asset.id for view in views)
            if not page.page_token:
                break

    assert {view.asset.id for view in active} == {owned, unowned}
    assert token == ""
    assert [view.asset.id for view in broken_views] == [broken]
    assert unowned_ids == [unowned]
    assert pending not in {view.asset.id for view in active}


@pytest.mark.anyio
async def test_listing_skips_rows_without_metadata(asset_service, session_factory) -> None:
    kept = await _seed(asset_service, session_factory)
    dropped = await _seed(asset_service, session_factory)
    await asset_service.metadata_store.delete(metadata_key(dropped))

    async with session_factory() as session:
        views, _ = await asset_service.list_assets(session, PageRequest())

    assert [view.asset.id for view in views] == [kept]


@pytest.mark.anyio
async def test_get_unknown_asset_is_not_found(asset_service, session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await asset_service.get(session, uuid4())


@pytest.mark.anyio
async def test_actor_ids_survive_a_fresh_session(asset_service, session_factory) -> None:
    asset_id = await _seed(asset_service, session_factory)
    async with session_factory() as session:
        await asset_service.archive(session, asset_id, _audit())

    async with session_factory() as session:
        stored = await session.get(MediaAsset, asset_id)

    assert stored.id == asset_id
    assert stored.created_by == ADMIN_ID
    assert stored.archived_by == ADMIN_ID


@pytest.mark.anyio
async def test_failed_archive_teardown_is_redriven_by_resync(asset_service, session_factory, owner_client) -> None:
    asset_id = await _seed(asset_service, session_factory)
    owner_client.fail_force_delete = True

    async with session_factory() as session:
        with pytest.raises(ExternalServiceError):
            await asset_service.archive(session, asset_id, _audit())
    assert await _status(session_factory, asset_id) == AssetStatus.archived
    async with session_factory() as session:
        with pytest.raises(ConflictError):
            await asset_service.archive(session, asset_id, _audit())

    owner_client.fail_force_delete = False
    async with session_factory() as session:
        results = await asset_service.resync_owners(session, asset_id)

    assert results == {"collection": {"force_delete": 1}, "product": {"force_delete": 1}}
    assert owner_client.calls == [("force_delete", (asset_id,), None, ())]


@pytest.mark.anyio
async def test_resync_holds_no_transaction_during_owner_calls(asset_service, session_factory, owner_client) -> None:
    asset_id = await _seed(asset_service, session_factory, owners=(PRODUCT,))
    seen: list[tuple[str, bool]] = []

    async with session_factory() as session:
        owner_client.on_call = lambda operation: seen.append((operation, session.in_transaction()))
        await asset_service.resync_owners(session, asset_id)

    assert seen == [("add_batch", False)]


@pytest.mark.anyio
async def test_purge_keeps_recent_documents_without_rows(asset_service, session_factory) -> None:
    now = datetime.now(timezone.utc)
    in_flight = AssetMetadata(key=metadata_key(uuid4()), title="Uploading", created_at=now)
    stale = AssetMetadata(key=metadata_key(uuid4()), title="Left over", created_at=now - timedelta(hours=2))
    legacy = AssetMetadata(key=metadata_key(uuid4()), title="Before timestamps")
    for document in (in_flight, stale, legacy):
        await asset_service.metadata_store.create(document)

    async with session_factory() as session:
        assert await asset_service.purge_orphan_metadata(session, dry_run=True, grace_seconds=900) == sorted(
            [stale.key, legacy.key]
        )
        purged = await asset_service.purge_orphan_metadata(session, grace_seconds=900)

    assert purged == sorted([stale.key, legacy.key])
    assert await asset_service.metadata_store.keys() == [in_flight.key]


@pytest.mark.anyio
async def test_begin_upload_stamps_metadata_creation_time(asset_service, session_factory) -> None:
    asset_id = await _seed(asset_service, session_factory)

    document = await asset_service.metadata_store.get(metadata_key(asset_id))

    assert document.created_at is not None
    async with session_factory() as session:
        assert await asset_service.purge_orphan_metadata(session) == []
    assert await asset_service.metadata_store.get(metadata_key(asset_id)) is not None
