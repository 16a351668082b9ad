"""TLS server configuration and OpenSSL context construction."""

import pytest
from OpenSSL import SSL

from tests.fakes import RoundTripPolicy
from tlsgate.certificates import CertificateBundle
from tlsgate.exceptions import ConfigurationError
from tlsgate.tickets import DisabledTicketPolicy
from tlsgate.tls import (
    ALPN_PROTOCOLS,
    MAX_SESSION_TIMEOUT,
    ServerContexts,
    TLSServerConfig,
    build_context,
)


def _options(context: SSL.Context) -> int:
    return context.set_options(0)


def test_alpn_order(tls_config: TLSServerConfig) -> None:
    assert ALPN_PROTOCOLS == (b"h2", b"http/1.1", b"http/1.0")
    assert tls_config.alpn_protocols == ALPN_PROTOCOLS


@pytest.mark.parametrize(
    "offered, expected",
    [
        ([b"http/1.1", b"h2"], b"h2"),
        ([b"http/1.0", b"http/1.1"], b"http/1.1"),
        ([b"http/1.0"], b"http/1.0"),
        ([b"spdy/3", b"h2c"], None),
        ([], None),
    ],
)
def test_select_alpn_prefers_server_order(
    tls_config: TLSServerConfig, offered, expected
) -> None:
    assert tls_config.select_alpn(offered) == expected


def test_empty_chain_is_rejected(bundle: CertificateBundle) -> None:
    with pytest.raises(ConfigurationError):
        TLSServerConfig(CertificateBundle(chain=(), private_key=bundle.private_key))


@pytest.mark.parametrize("protocols", [(), (b"",), (b"x" * 256,)])
def test_invalid_alpn_lists_are_rejected(bundle: CertificateBundle, protocols) -> None:
    with pytest.raises(ConfigurationError):
        TLSServerConfig(bundle, alpn_protocols=protocols)


def test_mismatched_key_is_a_configuration_error(
    bundle: CertificateBundle, other_bundle: CertificateBundle
) -> None:
    broken = CertificateBundle(chain=bundle.chain, private_key=other_bundle.private_key)
    with pytest.raises(ConfigurationError) as excinfo:
        build_context(TLSServerConfig(broken))
    assert excinfo.value.code == "TLS_CONFIGURATION_ERROR"


def test_zero_tickets_stay_on_with_maximum_lifetime(tls_config: TLSServerConfig) -> None:
    context = build_context(tls_config)
    assert context.get_timeout() == MAX_SESSION_TIMEOUT
    assert not _options(context) & SSL.OP_NO_TICKET
    assert context.get_session_cache_mode() == SSL.SESS_CACHE_OFF


def test_unredeemable_tickets_get_a_context_per_connection(
    tls_config: TLSServerConfig,
) -> None:
    contexts = ServerContexts(tls_config)
    assert contexts.per_connection is True
    assert contexts.for_connection() is not contexts.for_connection()


@pytest.mark.parametrize("policy", [DisabledTicketPolicy(), RoundTripPolicy()])
def test_other_policies_share_one_context(bundle: CertificateBundle, policy) -> None:
    contexts = ServerContexts(TLSServerConfig(bundle, ticket_policy=policy))
    assert contexts.per_connection is False
    assert contexts.for_connection() is contexts.for_connection()


def test_disabled_tickets(bundle: CertificateBundle) -> None:
    context = build_context(TLSServerConfig(bundle, ticket_policy=DisabledTicketPolicy()))
    assert _options(context) & SSL.OP_NO_TICKET
    assert context.get_session_cache_mode() == SSL.SESS_CACHE_OFF


def test_reversible_policy_keeps_native_tickets(bundle: CertificateBundle) -> None:
    context = build_context(TLSServerConfig(bundle, ticket_policy=RoundTripPolicy()))
    assert context.get_timeout() == 300
    assert not _options(context) & SSL.OP_NO_TICKET
