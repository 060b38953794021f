"""taskboard.integrations — External service gateway modules.

All outbound calls to directory servers must go through a gateway in this
package, never via bare ldap3 connections in services or blueprints.
Every call carries a caller-imposed timeout and is logged; timeouts and
connection errors are surfaced, not retried.

Current gateways:
  ldap_gateway.LdapDirectorySource — Active Directory / LDAP user lookup
"""
