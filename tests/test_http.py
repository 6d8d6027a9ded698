"""
The MIT License (MIT)

Copyright (c) 2015-present Rapptz

Permission is hereby granted, free of charge, to any person obtaining a
copy of this software and associated documentation files (the "Software"),
to deal in the Software without restriction, including without limitation
the rights to use, copy, modify, merge, publish, distribute, sublicense,
and/or sell copies of the Software, and to permit persons to whom the
Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in
all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS
OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING
FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER
DEALINGS IN THE SOFTWARE.
"""

from __future__ import annotations

import asyncio
import json

import aiohttp
import pytest

import cordhttp
from cordhttp.http import InvalidTokenFlag, Route


UNAUTHORIZED = {'message': '401: Unauthorized', 'code': 0}
INVALID_FORM_BODY = {
    'code': 50035,
    'message': 'Invalid Form Body',
    'errors': {'content': {'_errors': [{'code': 'BASE_TYPE_MAX_LENGTH', 'message': 'Must be 2000 or fewer in length.'}]}},
}


def test_route_bucket_ignores_minor_parameters():
    first = Route('DELETE', '/channels/{channel_id}/messages/{message_id}', channel_id=1, message_id=10)
    second = Route('DELETE', '/channels/{channel_id}/messages/{message_id}', channel_id=1, message_id=20)
    other_channel = Route('DELETE', '/channels/{channel_id}/messages/{message_id}', channel_id=2, message_id=10)

    assert first.bucket == second.bucket == 'DELETE /channels/{channel_id}/messages/{message_id}:1'
    assert first.bucket != other_channel.bucket
    assert first.url == 'https://discord.com/api/v9/channels/1/messages/10'


def test_route_key_with_metadata():
    route = Route('DELETE', '/channels/{channel_id}/messages/{message_id}', metadata='sub-ratelimit', channel_id=1)
    assert route.key == 'DELETE /channels/{channel_id}/messages/{message_id}:sub-ratelimit'


def test_route_quotes_string_parameters():
    route = Route('GET', '/invites/{code}', code='a b')
    assert route.url == 'https://discord.com/api/v9/invites/a%20b'


def test_proxied_url_keeps_path():
    route = Route('POST', '/channels/{channel_id}/messages', channel_id=123)

    assert route.proxied_url('proxy.internal:3000', use_http=True) == 'http://proxy.internal:3000/api/v9/channels/123/messages'
    assert route.proxied_url('proxy.internal') == 'https://proxy.internal/api/v9/channels/123/messages'

    raw = Route.raw('POST', 'https://example.com/properties')
    assert raw.proxied_url('proxy.internal') == 'https://example.com/properties'


def test_invalid_token_flag_is_monotonic():
    flag = InvalidTokenFlag()
    assert not flag.is_set()
    assert flag.set() is True
    assert flag.set() is False
    assert flag.is_set()
    assert flag


@pytest.mark.asyncio
async def test_invalidated_token_short_circuits(fake_session, make_http, recording_ratelimiter):
    session = fake_session()
    limiter = recording_ratelimiter()
    http = make_http(session, ratelimiter=limiter)
    http.token_invalidated.set()

    with pytest.raises(cordhttp.TokenInvalidated):
        await http.get_me()

    assert session.calls == []
    assert limiter.acquired == []


@pytest.mark.asyncio
async def test_unauthorized_invalidates_token(fake_session, fake_response, make_http, recording_ratelimiter):
    session = fake_session(lambda method, url, kwargs: fake_response(401, UNAUTHORIZED, reason='Unauthorized'))
    limiter = recording_ratelimiter()
    http = make_http(session, ratelimiter=limiter)

    with pytest.raises(cordhttp.Unauthorized) as excinfo:
        await http.get_me()

    assert isinstance(excinfo.value, cordhttp.TokenInvalidated)
    assert excinfo.value.status == 401
    assert http.token_invalidated.is_set()

    with pytest.raises(cordhttp.TokenInvalidated) as excinfo:
        await http.get_channel(1)

    assert not isinstance(excinfo.value, cordhttp.HTTPException)
    assert len(session.calls) == 1
    assert len(limiter.acquired) == 1
    assert limiter.released == 1


@pytest.mark.asyncio
async def test_concurrent_unauthorized_sets_flag_once(fake_session, fake_response, make_http, counting_flag):
    async def respond():
        await asyncio.sleep(0.01)
        return fake_response(401, UNAUTHORIZED, reason='Unauthorized')

    session = fake_session(lambda method, url, kwargs: respond())
    flag = counting_flag()
    http = make_http(session, token_invalidated=flag)

    results = await asyncio.gather(*(http.get_me() for _ in range(10)), return_exceptions=True)

    assert all(isinstance(result, cordhttp.Unauthorized) for result in results)
    assert len(session.calls) == 10
    assert flag.transitions == 1
    assert flag.is_set()


@pytest.mark.asyncio
async def test_forgetting_invalid_tokens(fake_session, fake_response, make_http):
    bodies = {401: UNAUTHORIZED, 200: {'id': '1'}}
    statuses = iter([401, 200])

    def handler(method, url, kwargs):
        status = next(statuses)
        return fake_response(status, bodies[status])

    session = fake_session(handler)
    http = make_http(session, token_invalidated=None)

    with pytest.raises(cordhttp.Unauthorized):
        await http.get_me()

    assert await http.get_me() == {'id': '1'}
    assert len(session.calls) == 2


@pytest.mark.asyncio
async def test_ratelimiter_wait_times_out(fake_session, make_http, recording_ratelimiter):
    session = fake_session()
    http = make_http(session, ratelimiter=recording_ratelimiter(delay=5), timeout=0.05)

    with pytest.raises(cordhttp.RequestTimeout) as excinfo:
        await http.get_me()

    assert excinfo.value.stage == 'ratelimit'
    assert not isinstance(excinfo.value, cordhttp.RateLimited)
    assert session.calls == []


@pytest.mark.asyncio
async def test_send_times_out(fake_session, fake_response, make_http, recording_ratelimiter):
    async def respond():
        await asyncio.sleep(5)
        return fake_response(200, {})

    session = fake_session(lambda method, url, kwargs: respond())
    limiter = recording_ratelimiter()
    http = make_http(session, ratelimiter=limiter, timeout=0.05)

    with pytest.raises(cordhttp.RequestTimeout) as excinfo:
        await http.get_me()

    assert excinfo.value.stage == 'send'
    assert limiter.released == 1
    assert not http.token_invalidated.is_set()


@pytest.mark.asyncio
async def test_send_deadline_starts_after_ratelimiter(fake_session, fake_response, make_http, recording_ratelimiter):
    async def respond():
        await asyncio.sleep(0.3)
        return fake_response(200, {'ok': True})

    session = fake_session(lambda method, url, kwargs: respond())
    http = make_http(session, ratelimiter=recording_ratelimiter(delay=0.3), timeout=0.5)

    assert await http.get_me() == {'ok': True}


@pytest.mark.asyncio
async def test_too_many_requests_updates_ratelimiter(fake_session, fake_response, make_http, recording_ratelimiter):
    body = {'message': 'You are being rate limited.', 'retry_after': 1.5, 'global': False}
    session = fake_session(
        lambda method, url, kwargs: fake_response(
            429, body, headers={'X-Ratelimit-Bucket': 'abcd'}, reason='Too Many Requests'
        )
    )
    limiter = recording_ratelimiter()
    http = make_http(session, ratelimiter=limiter)

    with pytest.raises(cordhttp.RateLimited) as excinfo:
        await http.send_message(123, 'hello')

    assert excinfo.value.retry_after == 1.5
    assert excinfo.value.is_global is False
    assert len(limiter.updates) == 1
    update = limiter.updates[0]
    assert update['key'] == 'POST /channels/{channel_id}/messages:123'
    assert update['retry_after'] == 1.5
    assert update['headers']['X-Ratelimit-Bucket'] == 'abcd'
    assert limiter.released == 1
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_global_rate_limit(fake_session, fake_response, make_http, recording_ratelimiter):
    body = {'message': 'You are being rate limited.', 'retry_after': 4, 'global': True}
    session = fake_session(lambda method, url, kwargs: fake_response(429, body, reason='Too Many Requests'))
    limiter = recording_ratelimiter()
    http = make_http(session, ratelimiter=limiter)

    with pytest.raises(cordhttp.RateLimited) as excinfo:
        await http.get_me()

    assert excinfo.value.is_global is True
    assert limiter.updates[0]['is_global'] is True


@pytest.mark.asyncio
async def test_retry_after_header_fallback(fake_session, fake_response, make_http):
    session = fake_session(
        lambda method, url, kwargs: fake_response(429, 'slow down', headers={'Retry-After': '3'}, reason='Too Many Requests')
    )
    http = make_http(session)

    with pytest.raises(cordhttp.RateLimited) as excinfo:
        await http.get_me()

    assert excinfo.value.retry_after == 3.0


@pytest.mark.asyncio
async def test_too_many_requests_without_retry_after(fake_session, fake_response, make_http, recording_ratelimiter):
    session = fake_session(lambda method, url, kwargs: fake_response(429, 'error code: 1015', reason='Too Many Requests'))
    limiter = recording_ratelimiter()
    http = make_http(session, ratelimiter=limiter)

    with pytest.raises(cordhttp.RateLimited) as excinfo:
        await http.get_me()

    assert excinfo.value.retry_after == 0.0
    assert excinfo.value.is_global is False
    assert limiter.updates == []
    assert limiter.released == 1


@pytest.mark.asyncio
async def test_success_updates_ratelimiter(fake_session, fake_response, make_http, recording_ratelimiter):
    headers = {'X-Ratelimit-Limit': '5', 'X-Ratelimit-Remaining': '4', 'X-Ratelimit-Reset-After': '1.0'}
    session = fake_session(lambda method, url, kwargs: fake_response(200, {'id': '42'}, headers=headers))
    limiter = recording_ratelimiter()
    http = make_http(session, ratelimiter=limiter)

    assert await http.get_channel(42) == {'id': '42'}
    assert limiter.acquired == ['GET /channels/{channel_id}:42']
    assert limiter.updates[0]['retry_after'] is None
    assert limiter.updates[0]['headers']['X-Ratelimit-Remaining'] == '4'
    assert limiter.released == 1


@pytest.mark.asyncio
async def test_text_body_is_returned(fake_session, fake_response, make_http):
    session = fake_session(lambda method, url, kwargs: fake_response(204, None, reason='No Content'))
    http = make_http(session)

    assert await http.delete_message(1, 2) == ''


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ('status', 'exception'),
    [
        (400, cordhttp.HTTPException),
        (403, cordhttp.Forbidden),
        (404, cordhttp.NotFound),
        (500, cordhttp.DiscordServerError),
        (502, cordhttp.DiscordServerError),
    ],
)
async def test_error_statuses_are_classified(fake_session, fake_response, make_http, recording_ratelimiter, status, exception):
    session = fake_session(lambda method, url, kwargs: fake_response(status, INVALID_FORM_BODY, reason='Error'))
    limiter = recording_ratelimiter()
    http = make_http(session, ratelimiter=limiter)

    with pytest.raises(cordhttp.HTTPException) as excinfo:
        await http.send_message(1, 'x' * 2001)

    assert type(excinfo.value) is exception
    assert excinfo.value.status == status
    assert excinfo.value.code == 50035
    assert 'In content: Must be 2000 or fewer in length.' in excinfo.value.text
    assert limiter.updates == []
    assert limiter.released == 1
    assert not http.token_invalidated.is_set()


@pytest.mark.asyncio
async def test_transport_failure(fake_session, make_http, recording_ratelimiter):
    session = fake_session(lambda method, url, kwargs: aiohttp.ClientConnectionError('connection refused'))
    limiter = recording_ratelimiter()
    http = make_http(session, ratelimiter=limiter)

    with pytest.raises(cordhttp.TransportError) as excinfo:
        await http.get_me()

    assert isinstance(excinfo.value.original, aiohttp.ClientConnectionError)
    assert limiter.released == 1
    assert not http.token_invalidated.is_set()


@pytest.mark.asyncio
async def test_json_body_with_charset(fake_session, fake_response, make_http):
    headers = {'Content-Type': 'application/json; charset=UTF-8'}
    session = fake_session(lambda method, url, kwargs: fake_response(200, {'id': '1'}, headers=headers))
    http = make_http(session)

    assert await http.get_me() == {'id': '1'}


@pytest.mark.asyncio
async def test_undecodable_body(fake_session, fake_response, make_http):
    session = fake_session(
        lambda method, url, kwargs: fake_response(200, '{not json', headers={'Content-Type': 'application/json'})
    )
    http = make_http(session)

    with pytest.raises(cordhttp.TransportError) as excinfo:
        await http.get_me()

    assert isinstance(excinfo.value.original, ValueError)


@pytest.mark.asyncio
async def test_proxy_rewrites_authority(fake_session, make_http):
    session = fake_session()
    http = make_http(session, proxy='proxy.internal:3000', use_http=True)

    await http.send_message(123, 'hello')

    url = session.calls[0].url
    assert url == 'http://proxy.internal:3000/api/v9/channels/123/messages'
    assert 'discord.com' not in url


@pytest.mark.asyncio
async def test_header_precedence(fake_session, make_http, properties_payload):
    session = fake_session()
    http = make_http(session, default_headers={'X-Custom': 'default', 'X-Other': 'kept'})

    await http.request(Route('GET', '/users/@me'), headers={'X-Custom': 'override'}, reason='cleaning up')

    headers = session.calls[0].headers
    assert headers['Authorization'] == 'Bot token'
    assert headers['X-Custom'] == 'override'
    assert headers['X-Other'] == 'kept'
    assert headers['X-Super-Properties'] == properties_payload['encoded']
    assert headers['User-Agent'] == properties_payload['properties']['browser_user_agent']
    assert headers['Sec-CH-UA'].startswith('"Google Chrome";v="120"')
    assert headers['X-Audit-Log-Reason'] == 'cleaning%20up'
    assert 'X-Context-Properties' not in headers


@pytest.mark.asyncio
async def test_unauthenticated_raw_request(fake_session, make_http):
    session = fake_session()
    http = make_http(session)

    await http.request(Route.raw('GET', 'https://example.com/info'), auth=False)

    headers = session.calls[0].headers
    assert 'Authorization' not in headers
    assert 'X-Super-Properties' not in headers
    assert 'User-Agent' in headers


@pytest.mark.asyncio
async def test_context_properties_from_route_table(fake_session, make_http):
    session = fake_session()
    http = make_http(session)

    await http.send_friend_request('someone')
    await http.request(Route('POST', '/users/@me/relationships'), json={}, context_properties=None)
    explicit = cordhttp.ContextProperties.from_user_profile()
    await http.request(Route('POST', '/users/@me/relationships'), json={}, context_properties=explicit)

    candidates = {cordhttp.ContextProperties.from_add_friend().value, cordhttp.ContextProperties.from_group_dm().value}
    assert session.calls[0].headers['X-Context-Properties'] in candidates
    assert 'X-Context-Properties' not in session.calls[1].headers
    assert session.calls[2].headers['X-Context-Properties'] == explicit.value


@pytest.mark.asyncio
async def test_default_mentions_fill_unset_policy(fake_session, make_http):
    session = fake_session()
    http = make_http(session, default_allowed_mentions=cordhttp.AllowedMentions.all())

    await http.send_message(1, 'hello')
    await http.send_message(1, 'hello', allowed_mentions=cordhttp.AllowedMentions.none())
    await http.edit_message(1, 2, content='edited')
    await http.leave_guild(3)

    sent, explicit, edited, left = (call.json for call in session.calls)
    assert sent['allowed_mentions'] == {'parse': ['everyone', 'users', 'roles'], 'replied_user': True}
    assert explicit['allowed_mentions'] == {'parse': []}
    assert edited['allowed_mentions'] == {'parse': ['everyone', 'users', 'roles'], 'replied_user': True}
    assert 'allowed_mentions' not in left


@pytest.mark.asyncio
async def test_without_default_mentions_nothing_is_added(fake_session, make_http):
    session = fake_session()
    http = make_http(session)

    await http.send_message(1, 'hello')

    assert 'allowed_mentions' not in session.calls[0].json


def test_default_mentions_in_multipart_payload(fake_session, make_http):
    http = make_http(fake_session(), default_allowed_mentions=cordhttp.AllowedMentions.none())
    form = [
        {'name': 'payload_json', 'value': '{"content":"hello"}'},
        {'name': 'files[0]', 'value': b'data', 'filename': 'a.txt', 'content_type': 'application/octet-stream'},
    ]

    fields = http._form_with_default_mentions(form)

    assert json.loads(fields[0]['value']) == {'content': 'hello', 'allowed_mentions': {'parse': []}}
    assert fields[1] is form[1]
    assert form[0]['value'] == '{"content":"hello"}'
