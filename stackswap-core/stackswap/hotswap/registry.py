"""
Registry of hotswap detectors, keyed by CloudFormation resource type.

The built-in detectors are registered in ``RESOURCE_DETECTORS``. Further detectors can be contributed by other
distributions as plugins in the ``stackswap.hotswap.detectors`` namespace, named after the resource type they
handle::

    class MyQueueDetectorPlugin(HotswapDetectorPlugin):
        name = "AWS::SQS::Queue"

        def load(self):
            from my_package.hotswap import QueueDetector

            self.factory = QueueDetector
"""

import logging
from typing import Optional, Type

from plux import Plugin, PluginManager

from stackswap import config
from stackswap.cloudformation.evaluate import EvaluateCloudFormationTemplate
from stackswap.exceptions import NoHotswapDetector
from stackswap.hotswap.common import ClassifiedChange, HotswapPropertyOverrides, ResourceChange

LOG = logging.getLogger(__name__)


class HotswapDetector:
    """
    Base class of the detectors deciding how (and whether) changes to one resource type can be hotswapped.
    """

    async def detect(
        self,
        logical_id: str,
        change: ResourceChange,
        evaluate_cfn_template: EvaluateCloudFormationTemplate,
        hotswap_property_overrides: HotswapPropertyOverrides,
    ) -> list[ClassifiedChange]:
        """
        Classifies the change of a resource.

        :param logical_id: the logical ID of the changed resource
        :param change: the change, with the old and new resource definitions and the changed properties
        :param evaluate_cfn_template: evaluation context of the stack the resource belongs to
        :param hotswap_property_overrides: user provided overrides of the properties used to hotswap
        :return: zero or more hotswap operations and rejected changes
        """
        raise NotImplementedError


class IgnoreChangeDetector(HotswapDetector):
    """Detector for resource types whose changes never matter for a deployment, like the CDK metadata."""

    async def detect(self, logical_id, change, evaluate_cfn_template, hotswap_property_overrides):
        return []


class HotswapDetectorPlugin(Plugin):
    """
    Base class for hotswap detector plugins. The plugin name is the resource type, and ``load`` sets the
    ``factory`` to the detector class.
    """

    namespace = "stackswap.hotswap.detectors"

    factory: Optional[Type[HotswapDetector]] = None


plugin_manager = PluginManager(HotswapDetectorPlugin.namespace)

RESOURCE_DETECTORS: dict[str, Type[HotswapDetector]] = {}


def register_detector(*resource_types: str):
    """Class decorator registering a detector for the given resource types."""

    def _register(detector_class: Type[HotswapDetector]) -> Type[HotswapDetector]:
        for resource_type in resource_types:
            RESOURCE_DETECTORS[resource_type] = detector_class
        return detector_class

    return _register


def load_detector(resource_type: str) -> HotswapDetector:
    """
    Returns a detector for the given resource type, preferring the built-in detectors over plugins.

    :raises NoHotswapDetector: if no detector is registered for the resource type
    """
    # make sure the built-in detector modules have registered themselves
    import stackswap.hotswap.detectors  # noqa: F401

    if detector_class := RESOURCE_DETECTORS.get(resource_type):
        return detector_class()

    try:
        plugin = plugin_manager.load(resource_type)
        return plugin.factory()
    except ValueError:
        # could not find a plugin for that name
        pass
    except Exception:
        if config.HOTSWAP_VERBOSE_ERRORS:
            LOG.warning(
                "Failed to load hotswap detector plugin for resource type %s",
                resource_type,
                exc_info=LOG.isEnabledFor(logging.DEBUG),
            )

    raise NoHotswapDetector(resource_type)
