"""
MITRE ATT&CK and kill-chain reference tables.
"""

from typing import Dict, Iterable, List

MITRE_TACTICS = [
    'Reconnaissance', 'Resource Development', 'Initial Access', 'Execution',
    'Persistence', 'Privilege Escalation', 'Defense Evasion', 'Credential Access',
    'Discovery', 'Lateral Movement', 'Collection', 'Command and Control',
    'Exfiltration', 'Impact'
]

KILL_CHAIN = [
    'Reconnaissance', 'Weaponization', 'Delivery', 'Exploitation',
    'Installation', 'Command & Control', 'Actions on Objectives'
]

# keyword -> technique, checked against lowercase text
MITRE_MAPPINGS: Dict[str, Dict[str, str]] = {
    'ssh': {'id': 'T1021.004', 'name': 'Remote Services: SSH', 'tactic': 'Lateral Movement'},
    'rdp': {'id': 'T1021.001', 'name': 'Remote Services: RDP', 'tactic': 'Lateral Movement'},
    'smb': {'id': 'T1021.002', 'name': 'Remote Services: SMB', 'tactic': 'Lateral Movement'},
    'brute': {'id': 'T1110', 'name': 'Brute Force', 'tactic': 'Credential Access'},
    'credential': {'id': 'T1078', 'name': 'Valid Accounts', 'tactic': 'Defense Evasion'},
    'phishing': {'id': 'T1566', 'name': 'Phishing', 'tactic': 'Initial Access'},
    'malware': {'id': 'T1204', 'name': 'User Execution', 'tactic': 'Execution'},
    'ransomware': {'id': 'T1486', 'name': 'Data Encrypted for Impact', 'tactic': 'Impact'},
    'c2': {'id': 'T1071', 'name': 'Application Layer Protocol', 'tactic': 'Command and Control'},
    'exfil': {'id': 'T1041', 'name': 'Exfiltration Over C2', 'tactic': 'Exfiltration'},
    'scan': {'id': 'T1046', 'name': 'Network Service Discovery', 'tactic': 'Discovery'},
    'vuln': {'id': 'T1190', 'name': 'Exploit Public-Facing Application', 'tactic': 'Initial Access'},
    'cve': {'id': 'T1190', 'name': 'Exploit Public-Facing Application', 'tactic': 'Initial Access'},
}

PORT_TECHNIQUES: Dict[int, str] = {
    22: 'ssh',
    3389: 'rdp',
    445: 'smb',
}

TACTIC_MITIGATIONS: Dict[str, List[str]] = {
    'Lateral Movement': ['M1035 - Limit Access to Resource Over Network', 'M1032 - Multi-factor Authentication'],
    'Credential Access': ['M1032 - Multi-factor Authentication', 'M1036 - Account Use Policies'],
    'Defense Evasion': ['M1026 - Privileged Account Management'],
    'Initial Access': ['M1051 - Update Software', 'M1050 - Exploit Protection'],
    'Execution': ['M1038 - Execution Prevention', 'M1017 - User Training'],
    'Impact': ['M1053 - Data Backup'],
    'Command and Control': ['M1031 - Network Intrusion Prevention'],
    'Exfiltration': ['M1057 - Data Loss Prevention'],
    'Discovery': ['M1030 - Network Segmentation'],
}


def techniques_for_text(text: str) -> List[Dict[str, str]]:
    """Techniques whose keywords occur in the text, unique by technique id."""
    lower = (text or '').lower()
    found: Dict[str, Dict[str, str]] = {}
    for keyword, technique in MITRE_MAPPINGS.items():
        if keyword in lower and technique['id'] not in found:
            found[technique['id']] = technique
    return list(found.values())


def techniques_for_ports(ports: Iterable[int]) -> List[Dict[str, str]]:
    techniques = []
    for port in sorted(set(ports)):
        keyword = PORT_TECHNIQUES.get(port)
        if keyword:
            techniques.append(dict(MITRE_MAPPINGS[keyword], port=str(port)))
    return techniques


def guess_cve_severity(cve_id: str) -> str:
    """Severity heuristic from the CVE year: newer is assumed more relevant."""
    try:
        year = int(cve_id.split('-')[1])
    except (IndexError, ValueError):
        return 'medium'
    if year >= 2024:
        return 'critical'
    if year >= 2022:
        return 'high'
    return 'medium'
