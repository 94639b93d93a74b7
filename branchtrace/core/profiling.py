"""
Profiling of the numerical routines.
Decorate a method with @profile and its execution time will be accumulated
while the Profiler is running, e.g. to see how much of a continuation run is
spent in linear solves, eigenvalue computations or bisections.
Start with Profiler.start() and look at the results with Profiler.print_summary().
"""

import time
from functools import wraps


def profile(method):
    """
    This is a decorator (@profile), that measures the execution time of a method
    """
    @wraps(method)
    def do_profile(*args, **kw):
        # if profiling is turned off: only execute the method
        if not Profiler.is_active():
            return method(*args, **kw)
        name = method.__qualname__
        parent = Profiler._current_profile
        # nested calls are stored as children of the calling method's profile
        current = parent.children.get(name)
        if current is None:
            current = MethodProfile(name)
            parent.children[name] = current
        Profiler._current_profile = current
        ts = time.perf_counter()
        try:
            return method(*args, **kw)
        finally:
            current.execution_time += time.perf_counter() - ts
            current.ncalls += 1
            Profiler._current_profile = parent
    return do_profile


class MethodProfile:
    """
    Node in the tree of nested profiled calls, holds the accumulated
    execution time and the number of calls of a method.
    """

    def __init__(self, name: str) -> None:
        #: qualified name of the method
        self.name = name
        #: accumulated execution time in seconds
        self.execution_time = 0.
        #: number of calls
        self.ncalls = 0
        #: profiles of the methods called from within this method
        self.children: dict[str, MethodProfile] = {}

    def flattened(self) -> dict:
        """Merge the tree into a dict {name: MethodProfile} without nesting"""
        data: dict[str, MethodProfile] = {}
        nodes = [self]
        while nodes:
            node = nodes.pop()
            nodes.extend(node.children.values())
            if node.ncalls == 0:
                continue
            if node.name not in data:
                data[node.name] = MethodProfile(node.name)
            data[node.name].execution_time += node.execution_time
            data[node.name].ncalls += node.ncalls
        return data

    def print_stats(self, total_time: float, depth: int = 0, nested: bool = True) -> None:
        """Print the stats of this profile and, recursively, of its children"""
        if self.ncalls > 0:
            rel = self.execution_time / total_time if total_time > 0 else 0.
            name = "│ " * max(depth - 1, 0) + ("├─" if depth > 0 else "") + self.name
            print(f"{name:<70} {self.execution_time:10.3f}s {rel:11.2%} {self.ncalls:8d}")
            if nested:
                depth += 1
        if nested:
            children = self.children.values()
        elif self.name == "":
            children = self.flattened().values()
        else:
            return
        for child in sorted(children, key=lambda c: c.execution_time, reverse=True):
            child.print_stats(total_time, depth, nested)


class Profiler:
    """
    Static class that controls the profiling of methods decorated with @profile.
    """

    _start_time = None
    _root_profile = MethodProfile("")
    _current_profile = _root_profile

    @staticmethod
    def start() -> None:
        """(Re)start the Profiler and discard previous measurements"""
        Profiler._root_profile = MethodProfile("")
        Profiler._current_profile = Profiler._root_profile
        Profiler._start_time = time.perf_counter()

    @staticmethod
    def stop() -> None:
        """Stop measuring"""
        Profiler._start_time = None

    @staticmethod
    def is_active() -> bool:
        return Profiler._start_time is not None

    @staticmethod
    def results() -> dict:
        """Flat dict of the measured MethodProfiles"""
        return Profiler._root_profile.flattened()

    @staticmethod
    def print_summary(nested: bool = True) -> None:
        """Print a summary on the execution times of the profiled methods"""
        if not Profiler.is_active():
            print("Profiler is inactive.")
            return
        total_time = time.perf_counter() - Profiler._start_time
        print("Profiler results:")
        print(f"{'method name':<70} {'total':>11} {'relative':>11} {'#calls':>8}")
        print("-" * 103)
        Profiler._root_profile.print_stats(total_time, nested=nested)
