"""Discovery of client calls, endpoints, internal service calls and message-bus calls per service."""

from netdep.discovery.annotations import apply_annotations, load_annotations, parse_annotation
from netdep.discovery.envvars import load_env_file
from netdep.discovery.frame import Frame
from netdep.discovery.natsanalyzer import NatsCall, find_nats_calls
from netdep.discovery.registry import AnalyserConfig, SignatureRegistry
from netdep.discovery.resolver import ValueResolver
from netdep.discovery.servicecalls import InterfaceCall, load_service_calls, parse_service_calls_package
from netdep.discovery.services import find_services
from netdep.discovery.walker import CallGraphWalker, discover_service

__all__ = [
    "AnalyserConfig",
    "CallGraphWalker",
    "Frame",
    "InterfaceCall",
    "NatsCall",
    "SignatureRegistry",
    "ValueResolver",
    "apply_annotations",
    "discover_service",
    "find_nats_calls",
    "find_services",
    "load_annotations",
    "load_env_file",
    "load_service_calls",
    "parse_annotation",
    "parse_service_calls_package",
]
