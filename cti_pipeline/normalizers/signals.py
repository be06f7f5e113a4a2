"""
Curated lookup tables shared by the extractor, the correlation engine and the
query generator.
"""

from typing import Dict, List

from .schema import IndicatorKind

# Services commonly discussed on social media when they are being scanned or
# exploited. Social mentions of the keywords map to the same port signal as
# infrastructure hosts exposing the port.
PORT_SIGNALS: Dict[int, Dict[str, object]] = {
    22: {'id': 'ssh', 'label': 'SSH', 'keywords': ['ssh', 'openssh', 'secure shell', 'ssh brute', 'ssh scan']},
    23: {'id': 'telnet', 'label': 'Telnet', 'keywords': ['telnet', 'telnet scan']},
    25: {'id': 'smtp', 'label': 'SMTP', 'keywords': ['smtp', 'mail server', 'email server']},
    80: {'id': 'http', 'label': 'HTTP', 'keywords': ['web server', 'apache', 'nginx']},
    443: {'id': 'https', 'label': 'HTTPS', 'keywords': ['https', 'ssl', 'tls', 'certificate']},
    445: {'id': 'smb', 'label': 'SMB', 'keywords': ['smb', 'samba', 'windows share', 'eternalblue', 'wannacry']},
    1433: {'id': 'mssql', 'label': 'MSSQL', 'keywords': ['mssql', 'sql server', 'microsoft sql']},
    3306: {'id': 'mysql', 'label': 'MySQL', 'keywords': ['mysql', 'mariadb']},
    3389: {'id': 'rdp', 'label': 'RDP', 'keywords': ['rdp', 'remote desktop', 'bluekeep', 'windows rdp']},
    5432: {'id': 'postgres', 'label': 'PostgreSQL', 'keywords': ['postgres', 'postgresql', 'pgsql']},
    5900: {'id': 'vnc', 'label': 'VNC', 'keywords': ['vnc', 'vnc scan']},
    6379: {'id': 'redis', 'label': 'Redis', 'keywords': ['redis', 'redis scan', 'redis exposed']},
    8080: {'id': 'http-alt', 'label': 'HTTP-Alt', 'keywords': ['http proxy', 'web proxy']},
    27017: {'id': 'mongodb', 'label': 'MongoDB', 'keywords': ['mongodb', 'mongo', 'nosql']},
}

THREAT_SIGNALS: List[Dict[str, object]] = [
    {'id': 'scanning', 'label': 'Scanning Activity', 'keywords': ['scan', 'scanning', 'port scan', 'mass scan', 'shodan']},
    {'id': 'bruteforce', 'label': 'Brute Force', 'keywords': ['brute force', 'brute-force', 'password spray', 'credential stuffing']},
    {'id': 'ransomware', 'label': 'Ransomware', 'keywords': ['ransomware', 'ransom', 'lockbit', 'blackcat', 'encrypt']},
    {'id': 'botnet', 'label': 'Botnet', 'keywords': ['botnet', 'mirai', 'ddos', 'zombie', 'c2']},
    {'id': 'exploit', 'label': 'Exploitation', 'keywords': ['exploit', 'rce', 'remote code', 'zero-day', '0day']},
]

# alias -> canonical name
MALWARE_FAMILIES: Dict[str, str] = {
    'lockbit': 'LockBit',
    'blackcat': 'BlackCat',
    'alphv': 'BlackCat',
    'conti': 'Conti',
    'ryuk': 'Ryuk',
    'clop': 'Clop',
    'cl0p': 'Clop',
    'black basta': 'Black Basta',
    'akira': 'Akira',
    'wannacry': 'WannaCry',
    'mirai': 'Mirai',
    'emotet': 'Emotet',
    'qakbot': 'QakBot',
    'qbot': 'QakBot',
    'trickbot': 'TrickBot',
    'icedid': 'IcedID',
    'cobalt strike': 'Cobalt Strike',
    'redline': 'RedLine',
    'raccoon stealer': 'Raccoon Stealer',
    'agent tesla': 'Agent Tesla',
    'asyncrat': 'AsyncRAT',
    'njrat': 'njRAT',
    'xmrig': 'XMRig',
}

THREAT_ACTORS: Dict[str, str] = {
    'lazarus': 'Lazarus Group',
    'apt28': 'APT28',
    'fancy bear': 'APT28',
    'apt29': 'APT29',
    'cozy bear': 'APT29',
    'apt41': 'APT41',
    'sandworm': 'Sandworm',
    'kimsuky': 'Kimsuky',
    'turla': 'Turla',
    'volt typhoon': 'Volt Typhoon',
    'salt typhoon': 'Salt Typhoon',
    'scattered spider': 'Scattered Spider',
    'fin7': 'FIN7',
    'ta505': 'TA505',
    'lapsus$': 'LAPSUS$',
    'charming kitten': 'Charming Kitten',
}

PORT_SERVICES: Dict[int, str] = {
    21: 'FTP', 22: 'SSH', 23: 'Telnet', 25: 'SMTP', 80: 'HTTP', 139: 'NetBIOS',
    443: 'HTTPS', 445: 'SMB', 1433: 'MSSQL', 3306: 'MySQL', 3389: 'RDP',
    5432: 'PostgreSQL', 5900: 'VNC', 6379: 'Redis', 8080: 'HTTP-Alt',
    8443: 'HTTPS-Alt', 9200: 'Elasticsearch', 27017: 'MongoDB',
}


def port_to_service(port: int) -> str:
    return PORT_SERVICES.get(port, f"Port {port}")


def signal_label(kind: IndicatorKind, normalized_value: str) -> str:
    """Human readable label for a signal key."""
    if kind == IndicatorKind.PORT:
        try:
            port = int(normalized_value)
        except ValueError:
            return normalized_value
        definition = PORT_SIGNALS.get(port)
        return str(definition['label']) if definition else port_to_service(port)
    if kind == IndicatorKind.KEYWORD:
        for definition in THREAT_SIGNALS:
            if definition['id'] == normalized_value:
                return str(definition['label'])
        return normalized_value
    if kind == IndicatorKind.MALWARE_FAMILY:
        return _canonical(MALWARE_FAMILIES, normalized_value)
    if kind == IndicatorKind.THREAT_ACTOR:
        return _canonical(THREAT_ACTORS, normalized_value)
    if kind == IndicatorKind.CVE:
        return normalized_value.upper()
    return normalized_value


def _canonical(table: Dict[str, str], normalized_value: str) -> str:
    for canonical in table.values():
        if canonical.lower() == normalized_value:
            return canonical
    return table.get(normalized_value, normalized_value)
