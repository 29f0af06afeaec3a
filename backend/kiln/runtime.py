"""
Kiln runtime: wires the store, event bus, manager, watcher and build
coordinator together for one data directory.

Used by both the HTTP app (kiln.main) and the CLI. Lifecycle:

    runtime = KilnRuntime.open(settings)   # loads the store
    runtime.start()                         # watches every project
    ...
    runtime.close()                         # stops watching, drains, flushes
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .build.coordinator import BuildCoordinator
from .compilers.base import Compiler
from .compilers.registry import default_registry
from .config import KilnSettings
from .events import EventBus
from .persistence.store import ProjectStore
from .projects.manager import ProjectManager
from .watch.watcher import ProjectWatcher

logger = logging.getLogger(__name__)


@dataclass
class KilnRuntime:
    settings: KilnSettings
    store: ProjectStore
    event_bus: EventBus
    compiler: Compiler
    coordinator: BuildCoordinator
    manager: ProjectManager
    watcher: Optional[ProjectWatcher] = None

    @classmethod
    def open(
        cls,
        settings: KilnSettings,
        compiler: Optional[Compiler] = None,
        store: Optional[ProjectStore] = None,
    ) -> "KilnRuntime":
        """
        Load the project store and build every component.

        Raises:
            CorruptStoreError: If the persisted store cannot be read
        """
        if store is None:
            store = ProjectStore(str(settings.projects_file))
            store.load()

        compiler = compiler or default_registry(settings)
        event_bus = EventBus()

        coordinator = BuildCoordinator(
            store=store,
            compiler=compiler,
            event_bus=event_bus,
            max_workers=settings.max_workers,
            compile_timeout_seconds=settings.compile_timeout_seconds,
        )

        watcher = None
        if settings.watch_enabled:
            watcher = ProjectWatcher(
                store=store,
                on_intent=coordinator.handle_intent,
                debounce_seconds=settings.debounce_seconds,
                ignored_dir_names=settings.ignored_dir_names,
            )

        manager = ProjectManager(
            store=store,
            event_bus=event_bus,
            watcher=watcher,
            coordinator=coordinator,
            ignored_dir_names=settings.ignored_dir_names,
        )
        coordinator.on_file_list_change = manager.refresh_project

        return cls(
            settings=settings,
            store=store,
            event_bus=event_bus,
            compiler=compiler,
            coordinator=coordinator,
            manager=manager,
            watcher=watcher,
        )

    def start(self) -> None:
        """Start watching every registered project."""
        if self.watcher is None:
            return
        self.watcher.watch_all(self.store.all())
        self.watcher.start()
        logger.info(f"Watching {len(self.watcher.watched_project_ids())} project(s)")

    def close(self) -> None:
        """Stop watching, finish outstanding builds and flush the store."""
        if self.watcher is not None:
            self.watcher.stop()
        self.coordinator.shutdown(wait=True)
        self.event_bus.close()
        self.store.close()
        logger.info("Kiln runtime closed")
