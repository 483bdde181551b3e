"""
Integration tests for the message broker system.
End-to-end publish/subscribe scenarios across the matcher, registry and broker.
"""
import asyncio
import threading
import unittest
from unittest.mock import Mock, call
from topicbus import MessageBroker, Config, InvalidPattern


class TestBrokerIntegration(unittest.TestCase):
    """Integration tests for the message broker system"""

    def setUp(self):
        """Set up test fixtures before each test method"""
        self.config = Config()
        self.config.set('broker.delivery_mode', 'inline')

        self.failures = []
        self.broker = MessageBroker(self.config, error_handler=self.failures.append)
        self.broker.start()

    def tearDown(self):
        """Clean up after each test method"""
        self.broker.stop()

    def test_single_level_wildcard_scenario(self):
        """Subscribe devices/+/status; only status topics are delivered"""
        handler = Mock()
        self.broker.subscribe('devices/+/status', handler)

        self.broker.publish('devices/sensor-A/status', {'online': True})
        handler.assert_called_once_with('devices/sensor-A/status', {'online': True})

        self.broker.publish('devices/sensor-A/data', {'value': 123})
        self.assertEqual(handler.call_count, 1)

    def test_multi_level_wildcard_scenario(self):
        """Subscribe logs/#; every topic under logs is delivered"""
        handler = Mock()
        self.broker.subscribe('logs/#', handler)

        self.broker.publish('logs/system/info', "System started")
        self.broker.publish('logs/app/error/detail', {'code': 500})
        self.broker.publish('data/system', "some data")

        self.assertEqual(handler.call_args_list, [
            call('logs/system/info', "System started"),
            call('logs/app/error/detail', {'code': 500}),
        ])

    def test_duplicate_pattern_scenario(self):
        """Two handlers on alerts/system both fire once with identical arguments"""
        h1 = Mock()
        h2 = Mock()
        self.broker.subscribe('alerts/system', h1)
        self.broker.subscribe('alerts/system', h2)

        self.broker.publish('alerts/system', {'level': 'critical', 'service': 'auth'})

        h1.assert_called_once_with('alerts/system', {'level': 'critical', 'service': 'auth'})
        h2.assert_called_once_with('alerts/system', {'level': 'critical', 'service': 'auth'})

    def test_unsubscribe_scenario(self):
        """Publish, unsubscribe, publish again: the count stays at one"""
        handler = Mock()
        sid = self.broker.subscribe('updates/software', handler)

        self.broker.publish('updates/software', {'version': '1.1.0'})
        self.assertEqual(handler.call_count, 1)

        self.broker.unsubscribe(sid)
        self.broker.publish('updates/software', {'version': '1.1.0'})
        self.assertEqual(handler.call_count, 1)
        self.assertNotIn('updates/software', self.broker.registry.patterns())

    def test_sync_failure_scenario(self):
        """A raising handler on error/sync yields exactly one isolated failure"""
        handler = Mock(side_effect=Exception("Synchronous subscriber error"))
        self.broker.subscribe('error/sync', handler)

        with self.assertLogs('topicbus.broker', level='ERROR') as logs:
            self.broker.publish('error/sync', {'data': 'payload'})

        handler.assert_called_once_with('error/sync', {'data': 'payload'})
        self.assertEqual(len(logs.output), 1)
        self.assertEqual(len(self.failures), 1)
        self.assertEqual(self.failures[0].topic, 'error/sync')

    def test_misplaced_hash_is_rejected(self):
        with self.assertRaises(InvalidPattern):
            self.broker.subscribe('a/#/b', Mock())

    def test_mixed_patterns_route_independently(self):
        """Several patterns over one topic space each get exactly their matches"""
        seen = {}

        def recorder(name):
            seen[name] = []
            return lambda topic, message: seen[name].append(topic)

        self.broker.subscribe('#', recorder('all'))
        self.broker.subscribe('home/+/temp', recorder('temps'))
        self.broker.subscribe('home/kitchen/#', recorder('kitchen'))
        self.broker.subscribe('home/kitchen/temp', recorder('exact'))

        for topic in ['home/kitchen/temp', 'home/garage/temp', 'home/kitchen',
                      'home/kitchen/light/state', 'office/temp']:
            self.broker.publish(topic, None)

        self.assertEqual(seen['all'], ['home/kitchen/temp', 'home/garage/temp', 'home/kitchen',
                                       'home/kitchen/light/state', 'office/temp'])
        self.assertEqual(seen['temps'], ['home/kitchen/temp', 'home/garage/temp'])
        self.assertEqual(seen['kitchen'], ['home/kitchen/temp', 'home/kitchen',
                                           'home/kitchen/light/state'])
        self.assertEqual(seen['exact'], ['home/kitchen/temp'])

    def test_concurrent_publish_and_subscribe(self):
        """Publishing while other threads subscribe and unsubscribe stays consistent"""
        received = []
        received_lock = threading.Lock()
        errors = []

        def handler(topic, message):
            with received_lock:
                received.append(message)

        stable_id = self.broker.subscribe('load/#', handler)

        def churn(worker_id):
            try:
                for _ in range(50):
                    sid = self.broker.subscribe(f'load/{worker_id}/+', Mock())
                    self.broker.unsubscribe(sid)
            except Exception as e:
                errors.append(e)

        def publish(worker_id):
            try:
                for i in range(50):
                    self.broker.publish(f'load/{worker_id}/item', (worker_id, i))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=churn, args=(n,)) for n in range(3)]
        threads += [threading.Thread(target=publish, args=(n,)) for n in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(received), 150)
        self.assertEqual([s.subscription_id for s in self.broker.list_subscriptions()], [stable_id])
        self.assertEqual(self.broker.registry.patterns(), ['load/#'])


class TestAsyncIntegration(unittest.IsolatedAsyncioTestCase):
    """End-to-end delivery to coroutine subscribers"""

    async def test_async_subscribers_with_failures(self):
        failures = []
        broker = MessageBroker(Config(), error_handler=failures.append)
        received = []

        async def store(topic, message):
            await asyncio.sleep(0)
            received.append((topic, message))

        async def reject(topic, message):
            raise RuntimeError("Async subscriber rejection")

        broker.subscribe('orders/+/created', store)
        broker.subscribe('orders/#', reject)

        with self.assertLogs('topicbus.broker', level='ERROR'):
            for n in range(3):
                broker.publish(f'orders/{n}/created', {'id': n})
            await broker.flush_async()

        self.assertEqual(sorted(received), [(f'orders/{n}/created', {'id': n}) for n in range(3)])
        self.assertEqual(len(failures), 3)
        broker.stop()


if __name__ == '__main__':
    unittest.main()
