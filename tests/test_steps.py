import random
import threading
import time
import unittest

from launch_deployer.engine import (
    ROOT_STEP,
    current_step,
    enter_step,
    previous_step,
    restore_step,
    spawn_in_context,
)


class StepContextTests(unittest.TestCase):
    def test_root_when_nothing_entered(self) -> None:
        self.assertEqual(current_step(), ROOT_STEP)

    def test_nested_steps_restore_exactly(self) -> None:
        outer = enter_step("plan")
        inner = enter_step("customize")
        self.assertEqual(current_step(), "customize")
        self.assertEqual(previous_step(inner), "plan")
        restore_step(inner)
        self.assertEqual(current_step(), "plan")
        self.assertEqual(previous_step(outer), ROOT_STEP)
        restore_step(outer)
        self.assertEqual(current_step(), ROOT_STEP)

    def test_concurrent_paths_do_not_disturb_each_other(self) -> None:
        failures = []
        start = threading.Barrier(6)

        def path(name: str) -> None:
            rng = random.Random(name)
            start.wait()
            for i in range(50):
                before = current_step()
                token = enter_step(f"{name}-{i}")
                time.sleep(rng.uniform(0, 0.001))
                if current_step() != f"{name}-{i}":
                    failures.append((name, i, current_step()))
                restore_step(token)
                if current_step() != before:
                    failures.append((name, i, "restore"))

        threads = [threading.Thread(target=path, args=(f"p{n}",)) for n in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(failures, [])
        self.assertEqual(current_step(), ROOT_STEP)

    def test_spawned_worker_keeps_step_from_spawn_time(self) -> None:
        seen = []
        release = threading.Event()

        def worker() -> None:
            release.wait()
            seen.append(current_step())

        token = enter_step("install_dependencies")
        thread = spawn_in_context(worker, name="worker")
        restore_step(token)
        # the spawning path has moved on before the worker looks
        other = enter_step("customize")
        release.set()
        thread.join()
        restore_step(other)

        self.assertEqual(seen, ["install_dependencies"])
        self.assertTrue(thread.daemon)


if __name__ == "__main__":
    unittest.main()
