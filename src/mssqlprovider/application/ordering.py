"""
Dependency ordering of declared principals.

A user mapped to a login (``login_name``) depends on that login: the login
must be created first and dropped last. Users referring to a login that is
not declared are left to the create-time existence check.
"""

from __future__ import annotations

from graphlib import CycleError, TopologicalSorter
from typing import Sequence, Union

from mssqlprovider.domain.errors import DependencyError, InvalidConfigError
from mssqlprovider.domain.principals import Login, PrincipalKind, User

Principal = Union[Login, User]
Key = tuple[str, str]


def key_of(principal: Principal) -> Key:
    """Case-insensitive identity of a declared principal."""
    if isinstance(principal, Login):
        return (PrincipalKind.LOGIN.value, principal.login_name.lower())
    return (PrincipalKind.USER.value, f"{principal.database.lower()}/{principal.username.lower()}")


def dependency_graph(principals: Sequence[Principal]) -> dict[Key, set[Key]]:
    """
    Map every declared principal to the declared principals it depends on.

    Raises:
        InvalidConfigError: The same principal is declared twice
    """
    graph: dict[Key, set[Key]] = {}
    for principal in principals:
        key = key_of(principal)
        if key in graph:
            raise InvalidConfigError(f"{key[0]} '{key[1]}' is declared more than once")
        graph[key] = set()

    for principal in principals:
        if isinstance(principal, User) and principal.login_name:
            login_key = (PrincipalKind.LOGIN.value, principal.login_name.lower())
            if login_key in graph:
                graph[key_of(principal)].add(login_key)
    return graph


def creation_order(principals: Sequence[Principal]) -> list[Principal]:
    """
    Order principals so dependencies come first.

    Principals that become ready together keep their declaration order.

    Raises:
        DependencyError: The dependencies form a cycle
    """
    graph = dependency_graph(principals)
    position = {key_of(p): i for i, p in enumerate(principals)}
    by_key = {key_of(p): p for p in principals}

    sorter = TopologicalSorter(graph)
    try:
        sorter.prepare()
    except CycleError as e:
        raise DependencyError(f"circular dependency between {e.args[1]}") from e

    ordered: list[Principal] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready(), key=position.__getitem__)
        ordered.extend(by_key[k] for k in ready)
        sorter.done(*ready)
    return ordered


def deletion_order(principals: Sequence[Principal]) -> list[Principal]:
    """Reverse of the creation order: users are dropped before their logins."""
    return list(reversed(creation_order(principals)))
