from typing import Any, Awaitable, Callable, Union

PostResponseCallback = Callable[..., Union[Awaitable[Any], Any]]
JobFunc = Callable[..., Awaitable[Any]]
