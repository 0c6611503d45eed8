"""
Asset Provenance Registry - Contract Definitions

Function and event definitions for the registration workflow, the asset
registry, and the ownership token contract, plus the Aeneid deployment.
"""

from .abi import ContractEvent, ContractFunction, EventParam


AENEID_CHAIN_ID = 1315
AENEID_RPC_URL = "https://aeneid.storyrpc.io"

# Aeneid testnet deployment
IP_ASSET_REGISTRY_ADDRESS = "0x77319B4031e6eF1250907aa00018B8B1c67a244b"
REGISTRATION_WORKFLOWS_ADDRESS = "0xbe39E1C756e921BD25DF86e7AAa31106d1eb0424"
PUBLIC_TOKEN_CONTRACT_ADDRESS = "0xc32A8a0FF3beDDDa58393d022aF433e78739FAbc"

DEFAULT_GAS_LIMIT = 5_000_000

# (ipMetadataURI, ipMetadataHash, nftMetadataURI, nftMetadataHash)
IP_METADATA_TUPLE = ('string', 'bytes32', 'string', 'bytes32')

MINT_AND_REGISTER_IP = ContractFunction(
    name="mintAndRegisterIp",
    inputs=('address', 'address', IP_METADATA_TUPLE, 'bool'),
    outputs=('address', 'uint256'),
)

IP_ID = ContractFunction(
    name="ipId",
    inputs=('uint256', 'address', 'uint256'),
    outputs=('address',),
)

IP_ASSET_REGISTRY_GETTER = ContractFunction(
    name="IP_ASSET_REGISTRY",
    outputs=('address',),
)

TOTAL_SUPPLY = ContractFunction(name="totalSupply", outputs=('uint256',))

BALANCE_OF = ContractFunction(name="balanceOf", inputs=('address',), outputs=('uint256',))

OWNER_OF = ContractFunction(name="ownerOf", inputs=('uint256',), outputs=('address',))

IP_REGISTERED = ContractEvent(
    name="IPRegistered",
    params=(
        EventParam("caller", 'address', indexed=True),
        EventParam("ipId", 'address', indexed=True),
        EventParam("ipAssetRegistry", 'address', indexed=True),
        EventParam("tokenId", 'uint256'),
        EventParam("ipMetadataURI", 'string'),
    ),
)

TRANSFER = ContractEvent(
    name="Transfer",
    params=(
        EventParam("from", 'address', indexed=True),
        EventParam("to", 'address', indexed=True),
        EventParam("tokenId", 'uint256', indexed=True),
    ),
)
