"""Reference pattern catalogs.

Static, versioned tables of the patterns a complete knowledge base is
expected to document. Each row maps a pattern to the category directory it
belongs in. Aliases cover common file-name abbreviations (srp.md, cqrs.md).
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Tuple


CATALOG_VERSION = "2025.1"


@dataclass(frozen=True)
class CatalogEntry:
    """A pattern from a reference catalog."""
    name: str
    source_catalog: str
    category: str
    aliases: Tuple[str, ...] = ()
    documented: bool = False


# =============================================================================
# Gang of Four (23)
# =============================================================================

_GOF = [
    ("Abstract Factory", "creational", ()),
    ("Builder", "creational", ()),
    ("Factory Method", "creational", ("Factory",)),
    ("Prototype", "creational", ()),
    ("Singleton", "creational", ()),
    ("Adapter", "structural", ("Wrapper",)),
    ("Bridge", "structural", ()),
    ("Composite", "structural", ()),
    ("Decorator", "structural", ()),
    ("Facade", "structural", ("Façade",)),
    ("Flyweight", "structural", ()),
    ("Proxy", "structural", ()),
    ("Chain of Responsibility", "behavioral", ("Chain",)),
    ("Command", "behavioral", ()),
    ("Interpreter", "behavioral", ()),
    ("Iterator", "behavioral", ()),
    ("Mediator", "behavioral", ()),
    ("Memento", "behavioral", ()),
    ("Observer", "behavioral", ()),
    ("State", "behavioral", ()),
    ("Strategy", "behavioral", ()),
    ("Template Method", "behavioral", ()),
    ("Visitor", "behavioral", ()),
]

# =============================================================================
# Patterns of Enterprise Application Architecture
# =============================================================================

_POEAA = [
    "Transaction Script", "Domain Model", "Table Module", "Service Layer",
    "Table Data Gateway", "Row Data Gateway", "Active Record", "Data Mapper",
    "Unit of Work", "Identity Map", "Lazy Load", "Identity Field",
    "Foreign Key Mapping", "Association Table Mapping", "Dependent Mapping",
    "Embedded Value", "Serialized LOB", "Single Table Inheritance",
    "Class Table Inheritance", "Concrete Table Inheritance",
    "Inheritance Mappers", "Metadata Mapping", "Query Object", "Repository",
    "Model View Controller", "Page Controller", "Front Controller",
    "Template View", "Transform View", "Two Step View",
    "Application Controller", "Remote Facade", "Data Transfer Object",
    "Client Session State", "Server Session State", "Database Session State",
    "Gateway", "Mapper", "Layer Supertype", "Separated Interface", "Registry",
    "Value Object", "Money", "Special Case", "Plugin", "Service Stub",
    "Record Set", "Optimistic Offline Lock", "Pessimistic Offline Lock",
    "Coarse-Grained Lock", "Implicit Lock",
]

_POEAA_ALIASES: Dict[str, Tuple[str, ...]] = {
    "Model View Controller": ("MVC",),
    "Data Transfer Object": ("DTO",),
    "Unit of Work": ("UoW",),
    "Special Case": ("Null Object",),
}

# =============================================================================
# Enterprise Integration Patterns (65)
# =============================================================================

_EIP = [
    # Integration styles
    "File Transfer", "Shared Database", "Remote Procedure Invocation",
    "Messaging",
    # Messaging systems
    "Message Channel", "Message", "Pipes and Filters", "Message Router",
    "Message Translator", "Message Endpoint",
    # Channels
    "Point-to-Point Channel", "Publish-Subscribe Channel", "Datatype Channel",
    "Invalid Message Channel", "Dead Letter Channel", "Guaranteed Delivery",
    "Channel Adapter", "Messaging Bridge", "Message Bus",
    # Construction
    "Command Message", "Document Message", "Event Message", "Request-Reply",
    "Return Address", "Correlation Identifier", "Message Sequence",
    "Message Expiration", "Format Indicator",
    # Routing
    "Content-Based Router", "Message Filter", "Dynamic Router",
    "Recipient List", "Splitter", "Aggregator", "Resequencer",
    "Composed Message Processor", "Scatter-Gather", "Routing Slip",
    "Process Manager", "Message Broker",
    # Transformation
    "Envelope Wrapper", "Content Enricher", "Content Filter", "Claim Check",
    "Normalizer", "Canonical Data Model",
    # Endpoints
    "Messaging Gateway", "Messaging Mapper", "Transactional Client",
    "Polling Consumer", "Event-Driven Consumer", "Competing Consumers",
    "Message Dispatcher", "Selective Consumer", "Durable Subscriber",
    "Idempotent Receiver", "Service Activator",
    # System management
    "Control Bus", "Detour", "Wire Tap", "Message History", "Message Store",
    "Smart Proxy", "Test Message", "Channel Purger",
]

_EIP_ALIASES: Dict[str, Tuple[str, ...]] = {
    "Dead Letter Channel": ("Dead Letter Queue", "DLQ"),
    "Publish-Subscribe Channel": ("Pub-Sub", "Pub/Sub"),
    "Idempotent Receiver": ("Idempotent Consumer",),
}

# =============================================================================
# Cloud Design Patterns
# =============================================================================

_CLOUD = [
    "Ambassador", "Anti-Corruption Layer", "Asynchronous Request-Reply",
    "Backends for Frontends", "Bulkhead", "Cache-Aside", "Choreography",
    "Circuit Breaker", "Claim Check", "Compensating Transaction",
    "Competing Consumers", "Compute Resource Consolidation", "CQRS",
    "Deployment Stamps", "Edge Workload Configuration", "Event Sourcing",
    "External Configuration Store", "Federated Identity",
    "Gateway Aggregation", "Gateway Offloading", "Gateway Routing", "Geode",
    "Health Endpoint Monitoring", "Index Table", "Leader Election",
    "Materialized View", "Messaging Bridge", "Pipes and Filters",
    "Priority Queue", "Publisher-Subscriber", "Quarantine",
    "Queue-Based Load Leveling", "Rate Limiting", "Retry", "Saga",
    "Scheduler Agent Supervisor", "Sequential Convoy", "Sharding", "Sidecar",
    "Static Content Hosting", "Strangler Fig", "Throttling", "Valet Key",
]

_CLOUD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "Backends for Frontends": ("BFF",),
    "CQRS": ("Command Query Responsibility Segregation",),
    "Cache-Aside": ("Cache Aside",),
    "Strangler Fig": ("Strangler",),
    "Publisher-Subscriber": ("Pub-Sub", "Publish-Subscribe"),
    "Anti-Corruption Layer": ("ACL",),
}

# =============================================================================
# Domain-Driven Design
# =============================================================================

_DDD = [
    "Entity", "Value Object", "Aggregate", "Domain Event", "Domain Service",
    "Repository", "Factory", "Module", "Specification", "Bounded Context",
    "Ubiquitous Language", "Context Map", "Anti-Corruption Layer",
    "Shared Kernel", "Customer-Supplier", "Conformist", "Open Host Service",
    "Published Language", "Separate Ways",
]

# =============================================================================
# SOLID / GRASP (14)
# =============================================================================

_PRINCIPLES = [
    ("Single Responsibility", ("SRP",)),
    ("Open/Closed", ("OCP", "Open Closed")),
    ("Liskov Substitution", ("LSP",)),
    ("Interface Segregation", ("ISP",)),
    ("Dependency Inversion", ("DIP",)),
    ("Information Expert", ("Expert",)),
    ("Creator", ()),
    ("Controller", ()),
    ("Low Coupling", ()),
    ("High Cohesion", ()),
    ("Polymorphism", ()),
    ("Pure Fabrication", ()),
    ("Indirection", ()),
    ("Protected Variations", ()),
]


CATALOG_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "GoF": ("creational", "structural", "behavioral"),
    "PoEAA": ("enterprise",),
    "EIP": ("messaging",),
    "Cloud": ("cloud",),
    "DDD": ("ddd",),
    "SOLID/GRASP": ("principles",),
}


@lru_cache(maxsize=1)
def load_catalog() -> Tuple[CatalogEntry, ...]:
    """Return every catalog entry, in catalog order."""
    entries: List[CatalogEntry] = []
    for name, category, aliases in _GOF:
        entries.append(CatalogEntry(name, "GoF", category, aliases))
    for name in _POEAA:
        entries.append(CatalogEntry(
            name, "PoEAA", "enterprise", _POEAA_ALIASES.get(name, ())))
    for name in _EIP:
        entries.append(CatalogEntry(
            name, "EIP", "messaging", _EIP_ALIASES.get(name, ())))
    for name in _CLOUD:
        entries.append(CatalogEntry(
            name, "Cloud", "cloud", _CLOUD_ALIASES.get(name, ())))
    for name in _DDD:
        entries.append(CatalogEntry(name, "DDD", "ddd"))
    for name, aliases in _PRINCIPLES:
        entries.append(CatalogEntry(name, "SOLID/GRASP", "principles", aliases))
    return tuple(entries)


def catalog_sizes() -> Dict[str, int]:
    """Number of entries per source catalog."""
    sizes: Dict[str, int] = {}
    for entry in load_catalog():
        sizes[entry.source_catalog] = sizes.get(entry.source_catalog, 0) + 1
    return sizes
