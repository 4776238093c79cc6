"""iRule sources and datagroup names attached to route virtual servers."""

from __future__ import annotations

from textwrap import dedent

from .naming import join_bigip_path, resource_name

HTTP_REDIRECT_IRULE = "http_redirect_irule"
HTTP_REDIRECT_NO_HOST_IRULE = "http_redirect_irule_nohost"
TLS_IRULE = "tls_irule"
AB_DEPLOYMENT_IRULE = "ab_deployment_irule"

HTTPS_REDIRECT_DG = "https_redirect_dg"
EDGE_HOSTS_DG = "ssl_edge_servername_dg"
REENCRYPT_HOSTS_DG = "ssl_reencrypt_servername_dg"
EDGE_SERVER_SSL_DG = "ssl_edge_serverssl_dg"
REENCRYPT_SERVER_SSL_DG = "ssl_reencrypt_serverssl_dg"
AB_DEPLOYMENT_DG = "ab_deployment_dg"


def redirect_irule_name(vs_name: str, https_port: int, with_host: bool = True) -> str:
    base = HTTP_REDIRECT_IRULE if with_host else HTTP_REDIRECT_NO_HOST_IRULE
    return f"{resource_name(vs_name, base)}_{https_port}"


def http_redirect_irule(https_port: int, vs_name: str, partition: str) -> str:
    """Redirect to HTTPS when ``host + path`` is in the redirect datagroup."""

    datagroup = join_bigip_path(partition, resource_name(vs_name, HTTPS_REDIRECT_DG))
    return dedent(
        f"""\
        when HTTP_REQUEST {{
            set host [string tolower [HTTP::host]]
            set path [string tolower [HTTP::path]]
            while {{ 1 }} {{
                if {{ [class match -- "$host$path" equals {datagroup}] }} {{
                    HTTP::redirect https://[getfield [HTTP::host] ":" 1]:{https_port}[HTTP::uri]
                    return
                }}
                if {{ $path eq "" || $path eq "/" }} {{ break }}
                set path [string range $path 0 [expr {{[string last "/" $path] - 1}}]]
            }}
            if {{ [class match -- "$host/" equals {datagroup}] }} {{
                HTTP::redirect https://[getfield [HTTP::host] ":" 1]:{https_port}[HTTP::uri]
            }}
        }}
        """
    )


def http_redirect_irule_no_host(https_port: int) -> str:
    return dedent(
        f"""\
        when HTTP_REQUEST {{
            HTTP::redirect https://[getfield [HTTP::host] ":" 1]:{https_port}[HTTP::uri]
        }}
        """
    )


def tls_irule(vs_name: str, partition: str) -> str:
    """Select server-side SSL per request from the termination datagroups."""

    def dg(name: str) -> str:
        return join_bigip_path(partition, resource_name(vs_name, name))

    return dedent(
        f"""\
        when CLIENTSSL_CLIENTHELLO {{
            SSL::enable serverside
        }}
        when HTTP_REQUEST {{
            set key [string tolower [HTTP::host]][HTTP::path]
            set key [string trimright $key "/"]
            set edge [class match -value -- $key equals {dg(EDGE_SERVER_SSL_DG)}]
            set reencrypt [class match -value -- $key equals {dg(REENCRYPT_SERVER_SSL_DG)}]
            if {{ $edge eq "false" }} {{
                SSL::disable serverside
            }} elseif {{ $reencrypt ne "" }} {{
                SSL::profile $reencrypt
            }}
            set pool [class match -value -- $key equals {dg(EDGE_HOSTS_DG)}]
            if {{ $pool eq "" }} {{
                set pool [class match -value -- $key equals {dg(REENCRYPT_HOSTS_DG)}]
            }}
            if {{ $pool ne "" }} {{
                pool /{partition}/$pool
            }}
        }}
        """
    )


def ab_deployment_irule(vs_name: str, partition: str) -> str:
    """Weighted pool selection from ``pool:weight,...`` datagroup records."""

    datagroup = join_bigip_path(partition, resource_name(vs_name, AB_DEPLOYMENT_DG))
    return dedent(
        f"""\
        when HTTP_REQUEST priority 200 {{
            set key [string trimright [string tolower [HTTP::host]][HTTP::path] "/"]
            set ab [class match -value -- $key equals {datagroup}]
            if {{ $ab eq "" }} {{ return }}
            set total 0
            foreach entry [split $ab ","] {{
                incr total [lindex [split $entry ":"] 1]
            }}
            if {{ $total <= 0 }} {{ return }}
            set pick [expr {{int(rand() * $total)}}]
            foreach entry [split $ab ","] {{
                set parts [split $entry ":"]
                incr pick -[lindex $parts 1]
                if {{ $pick < 0 }} {{
                    pool /{partition}/[lindex $parts 0]
                    return
                }}
            }}
        }}
        """
    )
