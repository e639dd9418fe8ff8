"""
statusbeat/contract/abi.py

Interface description of the status heart registry contract.
"""

STATUS_HEART_ABI = [
    {
        "inputs": [
            {"internalType": "string", "name": "peer", "type": "string"},
            {"internalType": "uint32", "name": "createTime", "type": "uint32"},
            {"internalType": "string", "name": "version", "type": "string"},
            {"internalType": "uint32", "name": "num", "type": "uint32"},
            {"internalType": "address", "name": "bttcAddress", "type": "address"},
            {"internalType": "uint32", "name": "signedTime", "type": "uint32"},
            {"internalType": "bytes", "name": "signed", "type": "bytes"},
        ],
        "name": "reportStatus",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "string", "name": "peer", "type": "string"},
            {"internalType": "uint32", "name": "createTime", "type": "uint32"},
            {"internalType": "string", "name": "version", "type": "string"},
            {"internalType": "uint32", "name": "num", "type": "uint32"},
            {"internalType": "address", "name": "bttcAddress", "type": "address"},
        ],
        "name": "genHashExt",
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "pure",
        "type": "function",
    },
]

REPORT_STATUS = "reportStatus"
GEN_HASH_EXT = "genHashExt"
