import pytest
from roomchat import crud
from roomchat.conversation import ConversationRef
from roomchat.read_state import ReadStateReconciler, ReadAction
from roomchat.cache import invalidate_threads
from roomchat.threads import build_threads, get_threads, find_thread, unread_total


async def populated(message):
    [out] = await crud.populate_messages([message])
    return out


@pytest.mark.asyncio
async def test_threads_group_by_other_user_and_listing(people):
    await crud.create_message('u1', 'u2', 'l1', 'hello host')
    await crud.create_message('u2', 'u1', 'l1', 'hello guest')
    await crud.create_message('u1', 'u2', 'l2', 'the loft too?')
    await crud.create_message('u3', 'u2', 'l1', 'me as well')

    host_threads = await build_threads('u2')
    assert len(host_threads) == 3
    # newest first
    assert host_threads[0].other_user.id == 'u3'
    assert host_threads[0].listing.title == 'Sunny room near campus'

    guest_on_l1 = find_thread(host_threads, ConversationRef('u1', 'l1'))
    assert guest_on_l1.last_message.content == 'hello guest'
    assert guest_on_l1.unread_count == 1
    assert guest_on_l1.other_user.name == 'Guest'

    assert unread_total(host_threads) == 3
    guest_threads = await build_threads('u1')
    assert find_thread(guest_threads, ConversationRef('u2', 'l1')).unread_count == 1
    assert find_thread(guest_threads, ConversationRef('u2', 'l2')).unread_count == 0


@pytest.mark.asyncio
async def test_threads_empty_for_new_user(people):
    assert await build_threads('u3') == []
    # no redis in tests, the cached path falls through to a fresh build
    assert await get_threads('u3') == []


@pytest.mark.asyncio
async def test_cached_threads_follow_writes(people, redis_cache):
    await crud.create_message('u1', 'u2', 'l1', 'first')
    [cached] = await get_threads('u2')
    assert cached.unread_count == 1
    assert [t.unread_count for t in await get_threads('u2')] == [1]
    assert 'threads:u2:0' in redis_cache.data

    await crud.mark_read('u2', 'u1')
    await invalidate_threads('u2')
    assert [t.unread_count for t in await get_threads('u2')] == [0]


@pytest.mark.asyncio
async def test_write_during_build_is_not_hidden_by_cache(people, redis_cache, monkeypatch):
    await crud.create_message('u1', 'u2', 'l1', 'first')
    list_messages = crud.list_messages_for_user

    async def rows_then_concurrent_send(user_id):
        rows = await list_messages(user_id)
        # another request stores a message while this build is still running
        await crud.create_message('u3', 'u2', 'l1', 'arrived mid-build')
        await invalidate_threads('u3', 'u2')
        return rows

    monkeypatch.setattr(crud, 'list_messages_for_user', rows_then_concurrent_send)
    assert len(await get_threads('u2')) == 1
    monkeypatch.setattr(crud, 'list_messages_for_user', list_messages)

    fresh = await get_threads('u2')
    assert {t.other_user.id for t in fresh} == {'u1', 'u3'}
    assert unread_total(fresh) == 2


@pytest.mark.asyncio
async def test_reconciler_increments_outside_active_view(people):
    await crud.create_message('u1', 'u2', 'l1', 'first')
    inbox = ReadStateReconciler('u2', await build_threads('u2'))
    ref = ConversationRef('u1', 'l1')
    assert inbox.get(ref).unread_count == 1

    second = await populated(await crud.create_message('u1', 'u2', 'l1', 'second'))
    assert inbox.on_new_message(second) is ReadAction.INCREMENT
    assert inbox.get(ref).unread_count == 2
    assert inbox.get(ref).last_message.content == 'second'


@pytest.mark.asyncio
async def test_reconciler_marks_read_in_active_view(people):
    await crud.create_message('u1', 'u2', 'l1', 'first')
    inbox = ReadStateReconciler('u2', await build_threads('u2'))
    ref = ConversationRef('u1', 'l1')

    inbox.open(ref)
    assert inbox.get(ref).unread_count == 0

    nxt = await populated(await crud.create_message('u1', 'u2', 'l1', 'are you there?'))
    assert inbox.on_new_message(nxt) is ReadAction.MARK_READ
    assert inbox.get(ref).unread_count == 0

    inbox.close()
    later = await populated(await crud.create_message('u1', 'u2', 'l1', 'hello?'))
    assert inbox.on_new_message(later) is ReadAction.INCREMENT
    assert inbox.unread_total() == 1


@pytest.mark.asyncio
async def test_reconciler_own_messages_and_unknown_threads(people):
    await crud.create_message('u1', 'u2', 'l1', 'first')
    inbox = ReadStateReconciler('u1', await build_threads('u1'))

    mine = await populated(await crud.create_message('u1', 'u2', 'l1', 'me again'))
    assert inbox.on_new_message(mine) is ReadAction.TOUCH
    assert inbox.get(ConversationRef('u2', 'l1')).unread_count == 0

    fresh = await populated(await crud.create_message('u2', 'u1', 'l2', 'try the loft'))
    assert inbox.on_new_message(fresh) is ReadAction.REFETCH
    assert inbox.get(ConversationRef('u2', 'l2')) is None


@pytest.mark.asyncio
async def test_receipts_flag_own_last_message(people):
    await crud.create_message('u1', 'u2', 'l1', 'first')
    inbox = ReadStateReconciler('u1', await build_threads('u1'))
    ref = ConversationRef('u2', 'l1')
    assert inbox.refs_with('u2') == [ref]
    assert inbox.refs_with('u2', 'l2') == []

    inbox.apply_receipt(ref)
    assert inbox.get(ref).last_message.read is True


@pytest.mark.asyncio
async def test_live_unread_matches_store_after_sequence(people):
    """Counters maintained from live events agree with a recount from storage"""
    inbox = ReadStateReconciler('u2')
    steps = [
        ('send', 'u1', 'l1'), ('send', 'u1', 'l1'), ('send', 'u3', 'l1'),
        ('read', 'u1', 'l1'), ('send', 'u1', 'l2'), ('send', 'u1', 'l1'),
        ('reply', 'u1', 'l1'), ('read', 'u3', None), ('send', 'u3', 'l1'),
    ]
    for action, other, listing in steps:
        if action == 'read':
            await crud.mark_read('u2', other, listing)
            for ref in inbox.refs_with(other, listing):
                inbox.apply_read(ref)
            continue
        sender, receiver = (other, 'u2') if action == 'send' else ('u2', other)
        message = await populated(await crud.create_message(sender, receiver, listing, f'{action} {other}'))
        if inbox.on_new_message(message) is ReadAction.REFETCH:
            inbox.load(await build_threads('u2'))

    for ref, thread in inbox.threads.items():
        assert thread.unread_count == await crud.count_unread('u2', ref.other_user_id, ref.listing_id)
    assert inbox.unread_total() == await crud.count_unread('u2')
